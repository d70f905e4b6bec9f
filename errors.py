class RendererError(Exception):
    """Base class for every error the service raises on purpose."""

    public_message = "Render failed"


class InputError(RendererError):
    public_message = "Invalid request"


class BackendUnavailable(RendererError):
    """Engine could not be launched or no render slot could be obtained."""

    public_message = "Renderer unavailable"


class RenderError(RendererError):
    """Navigation, content or screenshot failure during an active render."""

    public_message = "Render failed"


class RenderTimeoutError(RenderError):
    public_message = "Render timed out"


class JobNotFound(RendererError):
    public_message = "Job not found or expired"


class InvalidTransition(RendererError):
    public_message = "Invalid job state transition"


def describe_error(exc: BaseException, expose: bool = False) -> str:
    """
    Message that may be shown to a client.
    Our own errors carry messages we composed; anything else is internal
    detail and is only revealed when exposure is switched on.
    """
    if isinstance(exc, RendererError):
        return str(exc) or exc.public_message
    if expose:
        return f"{type(exc).__name__}: {exc}"
    return "Internal render error"
