"""
prompt_telemetry: execution logging and trace aggregation for prompt runs.

Every prompt invocation is recorded as an execution log row plus archived JSON
payloads in blob storage. Background workers enrich logs with provider usage,
index their variables for search, and roll logs that share a W3C trace id up
into a per-trace aggregate.

Everything is scoped by tenant_id + project_id.
"""
