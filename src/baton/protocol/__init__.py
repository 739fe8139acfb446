"""Protocol guidance engine: collect state, decide, and emit literal next steps."""
