"""Point calculator, ledger, streak tracker and achievement evaluator."""
