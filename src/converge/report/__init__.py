from .artifact import generate_artifacts

__all__ = ["generate_artifacts"]
