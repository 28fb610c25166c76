"""Sales intelligence agent.

An AI analyst that investigates a CRM deal, company or contact by calling
tools (the ATLAS knowledge base, HubSpot, web research) in a bounded loop
and records the outcome as a durable, pollable job.

Layers, leaves first:

* ``services``  — external systems (HubSpot REST, MCP tool servers, ATLAS,
  Firecrawl) plus the TTL cache and CloudWatch metrics
* ``tools``     — the per-run tool registry and the tool executor
* ``agent``     — the LangGraph tool-calling loop
* ``jobs``      — persistence, the job runner, retries, change detection
  and the background worker queue
* ``api`` / ``server`` / ``main`` — HTTP and command-line entry points
"""
