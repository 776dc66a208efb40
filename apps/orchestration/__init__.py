"""
Pipeline Orchestration app.

This app controls the full lifecycle of a deployment run through a strict,
linear chain:
build → test → publish → deploy → verify

Key concepts:
- Single orchestrator with correlation IDs (trace_id/run_id)
- State machine: PENDING → RUNNING → SUCCEEDED (or FAILED/ABORTED)
- Append-only run ledger; resumed runs skip stages that already succeeded
- One active run per deployment target
- Monitoring signals at every stage boundary
"""
