"""One reconciler per managed resource kind."""
