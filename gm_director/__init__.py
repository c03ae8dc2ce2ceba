"""GM Director: context-driven entity recommendations and narration trigger chains."""
