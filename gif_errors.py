"""
Состояния ошибок декодирования GIF.
Ошибки не прерывают разбор потока: каждый компонент накапливает их
в виде битовой маски, а родительские компоненты объединяют маски детей.
"""

from enum import IntFlag
from typing import Iterable, List


class ErrorState(IntFlag):
    """Битовая маска ошибок, обнаруженных при разборе"""
    OK = 0
    BAD_SIGNATURE = 1
    END_OF_INPUT_STREAM = 2
    DATA_BLOCK_TOO_SHORT = 4
    DATA_BLOCK_TOO_LONG = 8
    UNEXPECTED_BLOCK_TERMINATOR = 16
    BAD_DATA_BLOCK_INTRODUCER = 32
    LZW_MINIMUM_CODE_SIZE_TOO_LARGE = 64
    CODE_NOT_IN_DICTIONARY = 128
    TOO_FEW_PIXELS_IN_IMAGE_DATA = 256
    FRAME_HAS_NO_COLOR_TABLE = 512
    FRAME_HAS_NO_IMAGE_DATA = 1024
    BAD_COLOR_INDEX = 2048
    NO_GRAPHIC_CONTROL_EXTENSION = 4096


def describe_state(state: int) -> List[str]:
    """Возвращает имена всех флагов, установленных в маске"""
    return [flag.name for flag in ErrorState if flag and flag & state == flag]


class GifComponent:
    """Базовый класс для всех компонентов GIF потока"""

    def __init__(self):
        self.error_state = ErrorState.OK
        self.error_message = ''

    def set_status(self, state: ErrorState, message: str = ''):
        """Добавляет ошибку к состоянию компонента"""
        self.error_state |= state
        if not message or message in self.error_message.split('\n'):
            return
        if self.error_message:
            self.error_message += '\n'
        self.error_message += message

    def _child_components(self) -> Iterable['GifComponent']:
        """Дочерние компоненты, чьи ошибки входят в общее состояние"""
        return ()

    @property
    def consolidated_state(self) -> ErrorState:
        """Объединённое состояние компонента и всех его детей"""
        state = self.error_state
        for child in self._child_components():
            if child is not None:
                state |= child.consolidated_state
        return state

    def test_state(self, state: ErrorState) -> bool:
        """Проверяет, что все флаги из state установлены"""
        return self.consolidated_state & state == state

    def __str__(self):
        return '|'.join(describe_state(self.consolidated_state)) or 'OK'
