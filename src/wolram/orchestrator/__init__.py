"""Job lifecycle engine.

A job moves INIT -> DEFINE_AGENT -> PROCESS -> END exactly once per run.
Only PROCESS may be re-entered, bounded by the job's retry budget, with an
exponential backoff between attempts. Every finished job, successful or not,
produces an immutable audit record.

Collaborators stay behind small protocols: a generation backend (the HTTP
client, or a deterministic stub when no API key is configured) and an optional
result recorder (git). Neither of them holds lifecycle state.
"""
