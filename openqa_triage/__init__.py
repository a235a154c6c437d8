"""Helper scripts to triage failed jobs on openQA instances."""
