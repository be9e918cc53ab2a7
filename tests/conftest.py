"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from blockpilot.ai.orchestration.progress import ProgressBroadcaster
from blockpilot.editor.document_model import BlockDocument
from blockpilot.editor.global_styles import GlobalStylesService
from blockpilot.editor.mutations import DocumentMutationExecutor

from tests.helpers import RecordingSleep, make_document, make_styles


@pytest.fixture
def document() -> BlockDocument:
    return make_document()


@pytest.fixture
def executor(document: BlockDocument) -> DocumentMutationExecutor:
    return DocumentMutationExecutor(document)


@pytest.fixture
def styles() -> GlobalStylesService:
    return make_styles()


@pytest.fixture
def progress() -> ProgressBroadcaster:
    return ProgressBroadcaster(delay_scale=0)


@pytest.fixture
def no_sleep() -> RecordingSleep:
    return RecordingSleep()
