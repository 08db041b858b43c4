from __future__ import annotations


class ComposerError(Exception):
    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class StageFailure(ComposerError):
    pass


class RecordNotFoundError(StageFailure):
    pass


class PipelineStateError(ComposerError):
    pass


class PipelineStoppedError(ComposerError):
    pass


class GenerationAlreadyFinishedError(ComposerError):
    pass


class ContentNotReadyError(ComposerError):
    pass
