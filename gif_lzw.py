"""
LZW декомпрессия табличных данных изображения GIF.
Коды переменной длины читаются из подблоков LSB-first, словарь строится
на массивах prefix/suffix размером 4096 элементов.
"""

import logging

from gif_components import DataBlock
from gif_errors import ErrorState, GifComponent
from gif_reader import END_OF_STREAM, ByteReader

logger = logging.getLogger(__name__)

MAX_STACK_SIZE = 4096
MAX_CODE_SIZE = 12


def _max_code(code_size: int) -> int:
    return (1 << code_size) - 1


class TableBasedImageData(GifComponent):
    """
    Индексы цветов пикселей одного кадра.

    Декодирование не бросает исключений при повреждённых данных:
    недостающие пиксели остаются нулевыми, а причина записывается
    в состояние компонента.
    """

    def __init__(self, reader: ByteReader, pixel_count: int):
        super().__init__()
        if pixel_count < 1:
            raise ValueError(f"Число пикселей должно быть больше нуля, получено: {pixel_count}")

        self.pixel_count = pixel_count
        self.pixel_indexes = bytearray(pixel_count)
        self.lzw_minimum_code_size = reader.read_byte()
        self.decoded_count = 0

        if self.lzw_minimum_code_size == END_OF_STREAM:
            self.lzw_minimum_code_size = 0
            self.set_status(ErrorState.END_OF_INPUT_STREAM,
                            "Конец потока при чтении минимального размера кода LZW")
            self._check_pixel_count()
            return

        if self.clear_code >= MAX_STACK_SIZE:
            self.set_status(ErrorState.LZW_MINIMUM_CODE_SIZE_TOO_LARGE,
                            f"Минимальный размер кода LZW: {self.lzw_minimum_code_size}, "
                            f"код очистки: {self.clear_code}, размер словаря: {MAX_STACK_SIZE}")
            return

        self.decoded_count = self._decompress(reader)
        self._check_pixel_count()

    @property
    def clear_code(self) -> int:
        return 1 << self.lzw_minimum_code_size

    @property
    def end_of_information(self) -> int:
        return self.clear_code + 1

    @property
    def initial_code_size(self) -> int:
        return self.lzw_minimum_code_size + 1

    def _check_pixel_count(self):
        if self.decoded_count < self.pixel_count:
            self.set_status(ErrorState.TOO_FEW_PIXELS_IN_IMAGE_DATA,
                            f"Ожидалось пикселей: {self.pixel_count}, декодировано: {self.decoded_count}")

    def _next_block(self, reader: ByteReader) -> bytes:
        block = DataBlock.decode(reader)
        if block.consolidated_state:
            self.set_status(block.consolidated_state, block.error_message)
        return block.data

    def _decompress(self, reader: ByteReader) -> int:
        """Декодирует коды до EOI, конца подблоков или заполнения кадра"""
        pixel_count = self.pixel_count
        pixels = self.pixel_indexes
        clear_code = self.clear_code
        end_of_information = self.end_of_information
        code_size = self.initial_code_size
        next_code = clear_code + 2

        prefix = [0] * MAX_STACK_SIZE
        suffix = [code & 0xFF for code in range(clear_code)] + [0] * (MAX_STACK_SIZE - clear_code)
        stack = []

        previous_code = None
        first_code = 0
        datum = 0
        bits = 0
        block = b''
        block_pos = 0
        truncated = False
        pixel_index = 0

        while pixel_index < pixel_count:
            if bits < code_size:
                if block_pos >= len(block):
                    if truncated:
                        break
                    block = self._next_block(reader)
                    block_pos = 0
                    if not block:
                        # Терминатор подблоков или конец потока
                        break
                    truncated = bool(self.error_state & (ErrorState.DATA_BLOCK_TOO_SHORT |
                                                         ErrorState.END_OF_INPUT_STREAM))
                datum |= block[block_pos] << bits
                bits += 8
                block_pos += 1
                continue

            code = datum & _max_code(code_size)
            datum >>= code_size
            bits -= code_size

            if code == end_of_information:
                break

            if code > next_code:
                self.set_status(ErrorState.CODE_NOT_IN_DICTIONARY,
                                f"Следующий доступный код: {next_code}, прочитанный код: {code}")
                break

            if code == clear_code:
                code_size = self.initial_code_size
                next_code = clear_code + 2
                previous_code = None
                continue

            if previous_code is None:
                if code > clear_code:
                    self.set_status(ErrorState.CODE_NOT_IN_DICTIONARY,
                                    f"Первый код после очистки не является литералом: {code}")
                    break
                pixels[pixel_index] = suffix[code]
                pixel_index += 1
                previous_code = first_code = code
                continue

            in_code = code
            stack.clear()
            if code == next_code:
                stack.append(first_code)
                code = previous_code
            while code > clear_code:
                stack.append(suffix[code])
                code = prefix[code]
            first_code = suffix[code]
            stack.append(first_code)

            # Записи за пределами словаря не добавляются (отложенный код очистки)
            if next_code < MAX_STACK_SIZE:
                prefix[next_code] = previous_code
                suffix[next_code] = first_code
                next_code += 1
                if next_code & _max_code(code_size) == 0 and next_code < MAX_STACK_SIZE:
                    code_size += 1
            previous_code = in_code

            count = min(len(stack), pixel_count - pixel_index)
            stack.reverse()
            pixels[pixel_index:pixel_index + count] = bytes(stack[:count])
            pixel_index += count

        if pixel_index < pixel_count:
            logger.debug("LZW: декодировано %d из %d пикселей", pixel_index, pixel_count)
        return pixel_index

    @staticmethod
    def max_pixels(reader: ByteReader) -> int:
        """
        Верхняя граница числа пикселей, которое могут дать данные изображения
        с текущей позиции. Позиция reader не меняется.
        """
        start = reader.position
        minimum_code_size = reader.read_byte()
        if minimum_code_size == END_OF_STREAM:
            reader.seek(start)
            return 0
        data_size = reader.skip_sub_blocks()
        reader.seek(start)
        # Ширина кода не меньше minimum_code_size + 1, а k-й код после
        # очистки раскрывается не более чем в k пикселей
        codes = data_size * 8 // (minimum_code_size + 1)
        return codes * (codes + 1) // 2

    @staticmethod
    def skip(reader: ByteReader) -> int:
        """Пропускает данные изображения без декодирования, возвращает их размер"""
        start = reader.position
        if reader.read_byte() != END_OF_STREAM:
            reader.skip_sub_blocks()
        return reader.position - start
