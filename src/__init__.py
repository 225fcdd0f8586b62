"""Course QA Pipeline - staged-change agents for quiz content.

Two long-running agents keep course/quiz data healthy:
- Proposer: inspects course data and user reports, stages corrective operations
- Reviewer: re-validates staged changes against live data and commits them

Shared machinery: a bounded tool-calling session driver, a file-backed
change queue, a preflight analysis engine, a transactional operation
applier, and a multi-credential upstream client.
"""

__version__ = "0.1.0"
