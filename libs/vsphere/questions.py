from __future__ import annotations

import re

from simple_logger.logger import get_logger

from exceptions.exceptions import QuestionAnswerError, VSphereApiError
from libs.vsphere.backend import VSphereBackend
from libs.vsphere.models import Choice, VMInfo, VSphereVM

LOGGER = get_logger(__name__)


def resolve_answer_and_options(choices: list[Choice], answer: str) -> tuple[str, str]:
    """
    Map an answer to the key of the choice whose summary matches it (case insensitive).

    Returns:
        tuple[str, str]: The resolved answer, the literal answer when no summary matches,
            and a readable list of the valid options, e.g. "(0) Cancel (1) Retry".
    """
    resolved = answer
    options = []
    for choice in choices:
        options.append(f"({choice.key}) {choice.summary}")
        if choice.summary.casefold() == answer.casefold():
            resolved = choice.key

    return resolved, " ".join(options)


class QuestionResponder:
    def __init__(self, backend: VSphereBackend) -> None:
        self.backend = backend

    def answer_question(self, vm: VSphereVM, vm_info: VMInfo) -> None:
        """Answer a pending question on `vm_info` with every matching rule of vm.question_responses."""
        question = vm_info.question
        if not question:
            return

        for pattern, answer in vm.question_responses.items():
            try:
                matched = re.search(pattern, question.text)
            except re.error as exp:
                raise ValueError(f"error while parsing automated responses: {exp}") from exp

            if not matched:
                continue

            resolved, options = resolve_answer_and_options(choices=question.choices, answer=answer)
            LOGGER.info(f"Answering question '{question.text}' on VM {vm_info.name} with '{resolved}'")
            try:
                self.backend.answer_vm(vm=vm_info.ref, question_id=question.id, answer=resolved)
            except VSphereApiError as exp:
                raise QuestionAnswerError(
                    answer=resolved, question=question.text, reason=exp.reason, valid_options=options
                ) from exp
