"""
Структурные блоки GIF потока: заголовок, дескриптор логического экрана,
таблицы цветов, расширения и дескриптор изображения.
Каждый блок читается из ByteReader с текущей позиции и запоминает
свои ошибки вместо того, чтобы бросать исключения.
"""

from enum import IntEnum
from typing import List, Optional, Tuple

from gif_errors import ErrorState, GifComponent
from gif_reader import END_OF_STREAM, ByteReader

# Коды блоков
CODE_PLAINTEXT_LABEL = 0x01
CODE_EXTENSION_INTRODUCER = 0x21
CODE_IMAGE_SEPARATOR = 0x2C
CODE_TRAILER = 0x3B
CODE_GRAPHIC_CONTROL_LABEL = 0xF9
CODE_COMMENT_LABEL = 0xFE
CODE_APPLICATION_EXTENSION_LABEL = 0xFF

MAX_COLOR_TABLE_SIZE = 256


class DisposalMethod(IntEnum):
    """Что делать с изображением кадра после его показа"""
    NOT_SPECIFIED = 0
    DO_NOT_DISPOSE = 1
    RESTORE_BACKGROUND = 2
    RESTORE_PREVIOUS = 3


def interlaced_rows(height: int) -> List[int]:
    """Порядок строк чересстрочного изображения (4 прохода)"""
    return (list(range(0, height, 8)) + list(range(4, height, 8))
            + list(range(2, height, 4)) + list(range(1, height, 2)))


class DataBlock(GifComponent):
    """Подблок данных: байт длины и до 255 байт содержимого"""

    def __init__(self, declared_size: int, data: bytes):
        super().__init__()
        self.declared_size = declared_size
        self.data = data
        if declared_size > len(data):
            self.set_status(ErrorState.DATA_BLOCK_TOO_SHORT,
                            f"Заявленный размер блока: {declared_size}, фактический: {len(data)}")
        elif declared_size < len(data):
            self.set_status(ErrorState.DATA_BLOCK_TOO_LONG,
                            f"Заявленный размер блока: {declared_size}, фактический: {len(data)}")

    @classmethod
    def decode(cls, reader: ByteReader) -> 'DataBlock':
        block_size = reader.read_byte()
        if block_size == END_OF_STREAM:
            block = cls(0, b'')
            block.set_status(ErrorState.END_OF_INPUT_STREAM,
                             "Конец потока при чтении блока данных")
            return block
        return cls(block_size, reader.read_bytes(block_size))

    @property
    def actual_size(self) -> int:
        return len(self.data)

    def __len__(self):
        return len(self.data)


class GifHeader(GifComponent):
    """Заголовок: сигнатура GIF и версия формата"""

    def __init__(self, signature: str, version: str):
        super().__init__()
        self.signature = signature
        self.version = version
        if signature != 'GIF':
            self.set_status(ErrorState.BAD_SIGNATURE, f"Неверная сигнатура GIF: {signature!r}")

    @classmethod
    def decode(cls, reader: ByteReader) -> 'GifHeader':
        raw = reader.read_bytes(6)
        padded = raw.ljust(6, b'\x00')
        header = cls(padded[:3].decode('latin-1'), padded[3:].decode('latin-1'))
        if len(raw) < 6:
            header.set_status(ErrorState.END_OF_INPUT_STREAM, f"Прочитано байт заголовка: {len(raw)}")
        return header


class LogicalScreenDescriptor(GifComponent):
    """Размер холста, цвет фона и параметры глобальной таблицы цветов"""

    def __init__(self, width: int, height: int, has_global_color_table: bool = False,
                 color_resolution: int = 7, is_sorted: bool = False,
                 global_color_table_size_bits: int = 0,
                 background_color_index: int = 0, pixel_aspect_ratio: int = 0):
        super().__init__()
        self.width = width
        self.height = height
        self.has_global_color_table = has_global_color_table
        self.color_resolution = color_resolution
        self.is_sorted = is_sorted
        self.global_color_table_size_bits = global_color_table_size_bits
        self.background_color_index = background_color_index
        self.pixel_aspect_ratio = pixel_aspect_ratio

    @property
    def global_color_table_size(self) -> int:
        return 2 << self.global_color_table_size_bits

    @classmethod
    def decode(cls, reader: ByteReader) -> 'LogicalScreenDescriptor':
        width = reader.read_short()
        height = reader.read_short()
        packed = reader.read_byte()
        background = reader.read_byte()
        aspect = reader.read_byte()

        truncated = END_OF_STREAM in (width, height, packed, background, aspect)
        width, height, packed, background, aspect = (
            max(value, 0) for value in (width, height, packed, background, aspect))

        lsd = cls(
            width,
            height,
            has_global_color_table=bool(packed & 0x80),
            color_resolution=(packed & 0x70) >> 4,
            is_sorted=bool(packed & 0x08),
            global_color_table_size_bits=packed & 0x07,
            background_color_index=background,
            pixel_aspect_ratio=aspect,
        )
        if truncated:
            lsd.set_status(ErrorState.END_OF_INPUT_STREAM,
                           "Конец потока при чтении дескриптора логического экрана")
        return lsd


class ColorTable(GifComponent):
    """Таблица цветов (глобальная или локальная)"""

    def __init__(self, colors: Optional[List[Tuple[int, int, int]]] = None):
        super().__init__()
        self.colors = list(colors) if colors else []
        self._rgba = None

    @classmethod
    def decode(cls, reader: ByteReader, number_of_colors: int) -> 'ColorTable':
        """Читает number_of_colors RGB троек"""
        if number_of_colors < 0 or number_of_colors > MAX_COLOR_TABLE_SIZE:
            raise ValueError(
                f"Число цветов должно быть от 0 до {MAX_COLOR_TABLE_SIZE}, получено: {number_of_colors}")

        raw = reader.read_bytes(number_of_colors * 3)
        colors = [tuple(raw[i:i + 3]) for i in range(0, len(raw) - len(raw) % 3, 3)]
        table = cls(colors)
        if len(colors) < number_of_colors:
            table.set_status(ErrorState.END_OF_INPUT_STREAM,
                             f"Ожидалось цветов: {number_of_colors}, прочитано: {len(colors)}")
        return table

    def __len__(self):
        return len(self.colors)

    def __getitem__(self, index: int) -> Tuple[int, int, int]:
        return self.colors[index]

    @property
    def length(self) -> int:
        return len(self.colors)

    @property
    def size_bits(self) -> int:
        """Значение поля размера таблицы (длина = 2 << size_bits)"""
        length = len(self.colors)
        if length < 4 or length > MAX_COLOR_TABLE_SIZE or length & (length - 1):
            raise ValueError(
                f"Размер таблицы цветов не является степенью двойки: {length}")
        return length.bit_length() - 2

    def rgba(self) -> List[bytes]:
        """Цвета таблицы в виде готовых RGBA четвёрок"""
        if self._rgba is None:
            self._rgba = [bytes((r, g, b, 255)) for r, g, b in self.colors]
        return self._rgba


class GraphicControlExtension(GifComponent):
    """Расширение управления графикой (0xF9)"""

    EXPECTED_BLOCK_SIZE = 4

    def __init__(self, disposal_method: DisposalMethod = DisposalMethod.DO_NOT_DISPOSE,
                 expects_user_input: bool = False, has_transparent_color: bool = False,
                 delay_time: int = 0, transparent_color_index: int = 0,
                 block_size: int = EXPECTED_BLOCK_SIZE):
        super().__init__()
        self.block_size = block_size
        self.disposal_method = disposal_method
        self.expects_user_input = expects_user_input
        self.has_transparent_color = has_transparent_color
        self.delay_time = delay_time
        self.transparent_color_index = transparent_color_index

    @property
    def transparent_index(self) -> Optional[int]:
        """Индекс прозрачного цвета или None, если прозрачности нет"""
        return self.transparent_color_index if self.has_transparent_color else None

    @classmethod
    def decode(cls, reader: ByteReader) -> 'GraphicControlExtension':
        block_size = reader.read_byte()
        if block_size == END_OF_STREAM:
            gce = cls()
            gce.set_status(ErrorState.END_OF_INPUT_STREAM, "Конец потока в расширении управления графикой")
            return gce

        body = reader.read_bytes(block_size)
        if len(body) < cls.EXPECTED_BLOCK_SIZE:
            # Некорректный блок: используем значения по умолчанию
            gce = cls(block_size=block_size)
            gce.set_status(ErrorState.DATA_BLOCK_TOO_SHORT,
                           f"Размер блока расширения управления графикой: {len(body)}")
            reader.skip_sub_blocks()
            return gce

        packed = body[0]
        method = (packed & 0x1C) >> 2
        if method not in (DisposalMethod.RESTORE_BACKGROUND, DisposalMethod.RESTORE_PREVIOUS):
            # Не указан или зарезервирован - оставляем предыдущее изображение
            method = DisposalMethod.DO_NOT_DISPOSE

        gce = cls(
            disposal_method=DisposalMethod(method),
            expects_user_input=bool(packed & 0x02),
            has_transparent_color=bool(packed & 0x01),
            delay_time=body[1] | (body[2] << 8),
            transparent_color_index=body[3],
            block_size=block_size,
        )
        if block_size > cls.EXPECTED_BLOCK_SIZE:
            gce.set_status(ErrorState.DATA_BLOCK_TOO_LONG,
                           f"Размер блока расширения управления графикой: {block_size}")
        # Терминатор и возможные лишние подблоки
        reader.skip_sub_blocks()
        return gce


class ImageDescriptor(GifComponent):
    """Положение и размер изображения кадра на логическом экране"""

    def __init__(self, left: int, top: int, width: int, height: int,
                 has_local_color_table: bool = False, is_interlaced: bool = False,
                 is_sorted: bool = False, local_color_table_size_bits: int = 0):
        super().__init__()
        self.left = left
        self.top = top
        self.width = width
        self.height = height
        self.has_local_color_table = has_local_color_table
        self.is_interlaced = is_interlaced
        self.is_sorted = is_sorted
        self.local_color_table_size_bits = local_color_table_size_bits

    @property
    def local_color_table_size(self) -> int:
        return 2 << self.local_color_table_size_bits

    @property
    def pixel_count(self) -> int:
        return self.width * self.height

    @property
    def region(self) -> Tuple[int, int, int, int]:
        return self.left, self.top, self.width, self.height

    def rows_on_screen(self, screen_height: int) -> int:
        """
        Сколько строк данных (в порядке их хранения в потоке) нужно прочитать,
        чтобы получить все строки кадра, попадающие на экран высотой screen_height
        """
        visible = min(self.height, screen_height - self.top)
        if visible <= 0:
            return 0
        if not self.is_interlaced:
            return visible
        # Последняя видимая строка может стоять в любом из 4 проходов
        needed = 0
        for stored, row in enumerate(interlaced_rows(self.height)):
            if row < visible:
                needed = stored + 1
        return needed

    @classmethod
    def decode(cls, reader: ByteReader) -> 'ImageDescriptor':
        """Читает дескриптор (без разделителя 0x2C)"""
        left = reader.read_short()
        top = reader.read_short()
        width = reader.read_short()
        height = reader.read_short()
        packed = reader.read_byte()

        truncated = END_OF_STREAM in (left, top, width, height, packed)
        left, top, width, height, packed = (max(value, 0) for value in (left, top, width, height, packed))

        descriptor = cls(
            left, top, width, height,
            has_local_color_table=bool(packed & 0x80),
            is_interlaced=bool(packed & 0x40),
            is_sorted=bool(packed & 0x20),
            local_color_table_size_bits=packed & 0x07,
        )
        if truncated:
            descriptor.set_status(ErrorState.END_OF_INPUT_STREAM,
                                  "Конец потока при чтении дескриптора изображения")
        return descriptor


class ApplicationExtension(GifComponent):
    """Расширение приложения (0xFF): идентификатор, код подлинности и данные"""

    def __init__(self, identifier: str, authentication_code: str, data_blocks: List[DataBlock]):
        super().__init__()
        self.identifier = identifier
        self.authentication_code = authentication_code
        self.data_blocks = data_blocks

    def _child_components(self):
        return self.data_blocks

    @classmethod
    def decode(cls, reader: ByteReader) -> 'ApplicationExtension':
        identification = DataBlock.decode(reader)
        raw = identification.data
        blocks = []
        if identification.declared_size:
            while True:
                block = DataBlock.decode(reader)
                if block.consolidated_state:
                    blocks.append(block)
                    break
                if block.declared_size == 0:
                    break
                blocks.append(block)

        extension = cls(raw[:8].decode('latin-1'), raw[8:11].decode('latin-1'), blocks)
        if identification.consolidated_state:
            extension.set_status(identification.consolidated_state, identification.error_message)
        return extension


class NetscapeExtension(GifComponent):
    """Расширение NETSCAPE2.0 с числом повторов анимации (0 - бесконечно)"""

    IDENTIFIER = 'NETSCAPE'
    AUTHENTICATION_CODE = '2.0'

    def __init__(self, extension: ApplicationExtension):
        super().__init__()
        self.extension = extension
        self.loop_count = None
        for block in extension.data_blocks:
            if len(block.data) >= 3 and block.data[0] == 1:
                self.loop_count = block.data[1] | (block.data[2] << 8)
                break

    def _child_components(self):
        return (self.extension,)

    @classmethod
    def matches(cls, extension: ApplicationExtension) -> bool:
        return (extension.identifier == cls.IDENTIFIER
                and extension.authentication_code == cls.AUTHENTICATION_CODE)
