"""labstock.integrations — External service gateway modules.

All outbound HTTP calls to third-party APIs go through a gateway in this
package, never via bare `requests` calls in services or blueprints.

Every gateway:
  - Accepts an injected `requests.Session` (tests pass a mock)
  - Applies a bounded timeout
  - Returns a structured result or raises a domain error

Current gateways:
  resend_gateway.ResendGateway — transactional email HTTP API
  export_worker_gateway.ExportWorkerGateway — spreadsheet export worker trigger
"""
