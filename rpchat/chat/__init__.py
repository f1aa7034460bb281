"""Chat core: context assembly, system prompt, branching message operations."""
