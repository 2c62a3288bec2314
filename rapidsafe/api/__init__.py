"""HTTP API layer: request/response schemas and versioned routers."""
