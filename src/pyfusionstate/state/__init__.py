"""State layer.

The engine (:mod:`pyfusionstate.state.store`) owns the key/value map and is
the only component allowed to mutate it; :mod:`~pyfusionstate.state.events`
delivers change notifications and :mod:`~pyfusionstate.state.policy`
decides what counts as a change.
"""
