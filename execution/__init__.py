"""
Decision, paper execution and ledger layers.

Modules:
    - decision: DecisionEngine turning a store snapshot into EXECUTE/WAIT/SKIP
    - paper: PaperExecutor for contract selection, Greeks and fill simulation
    - exit_attributor: Greek-attributed P&L for closed paper trades
    - ledger: SQLiteLedger, the append-only audit trail
    - pipeline: DecisionPipeline wiring stores, engine, executor and ledger

Example:
    >>> from execution.pipeline import DecisionPipeline
    >>> from config.settings import load_settings
    >>>
    >>> pipeline = DecisionPipeline(load_settings())
    >>> pipeline.ingest_signal(raw_signal)
    >>> result = pipeline.evaluate("SPY")
    >>> print(result.verdict, result.decision.reason)
"""
