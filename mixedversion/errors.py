class MixedVersionError(Exception):
    """
    Base class for every error raised by the planner and its helpers.
    """

    pass


class SpecValidationError(MixedVersionError):
    """
    Raised when a test spec is inconsistent: malformed predecessor list,
    not enough predecessors for the requested number of upgrades, zero
    nodes, or a required hook category nobody registered for.

    Always raised before the first step of a plan is emitted.
    """

    pass


class UnknownHookError(MixedVersionError):
    """
    Raised when a hook is referenced by a name that was never registered.
    """

    def __init__(self, name: str, known: list[str]) -> None:
        self.name = name
        self.known = known
        error = f"hook '{name}' is not registered"
        hint = f"known hooks: {', '.join(known)}" if known else "no hooks are registered"
        super().__init__(f"{error}, {hint}")


class LifecycleError(MixedVersionError):
    """
    Raised on an impossible node lifecycle transition,
    e.g. draining a node which has already stopped.
    """

    pass
