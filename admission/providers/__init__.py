"""Collaborators consumed by the admission core: fleet state and storage probes."""
