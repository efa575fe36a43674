"""HTTP API layer: routers, schemas, middleware and error mapping."""
