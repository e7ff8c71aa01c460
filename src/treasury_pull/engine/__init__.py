"""Transfer core: error taxonomy, authorization store, delegation strategies and orchestration."""
