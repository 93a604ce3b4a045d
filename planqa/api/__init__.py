"""HTTP API for the PlanQA pipeline."""
