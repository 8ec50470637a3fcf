"""
Парсер GIF файлов без использования готовых библиотек.
За один проход по потоку строит каталог кадров (без декодирования пикселей),
а собранные кадры выдаёт по запросу через кеш с ключевыми кадрами.
"""

import logging
from collections import namedtuple
from typing import Dict, List, Optional, Tuple

from frame_cache import (DEFAULT_BUFFER_MEMORY, DEFAULT_KEYFRAME_MEMORY,
                         DEFAULT_MAX_KEYFRAME_REACH, KeyframeCache)
from gif_components import (CODE_APPLICATION_EXTENSION_LABEL, CODE_EXTENSION_INTRODUCER,
                            CODE_GRAPHIC_CONTROL_LABEL, CODE_IMAGE_SEPARATOR, CODE_TRAILER,
                            ApplicationExtension, ColorTable, DisposalMethod, GifHeader,
                            GraphicControlExtension, ImageDescriptor, LogicalScreenDescriptor,
                            NetscapeExtension)
from gif_compositor import BYTES_PER_PIXEL, CompositorOptions, composite
from gif_errors import ErrorState, GifComponent, describe_state
from gif_frame import GifFrame
from gif_lzw import TableBasedImageData
from gif_reader import END_OF_STREAM, ByteReader

logger = logging.getLogger(__name__)

CODE_BLOCK_TERMINATOR = 0x00

GifInfo = namedtuple('GifInfo', ['width', 'height', 'frame_count', 'delays_ms'])


class GIFParser(GifComponent):
    """Парсер для GIF файлов"""

    def __init__(self, file_path: Optional[str] = None, data: Optional[bytes] = None,
                 zero_alpha_background: bool = True):
        super().__init__()
        self.file_path = file_path
        self.data = data
        self.options = CompositorOptions(zero_alpha_background=zero_alpha_background)
        self._limits = (DEFAULT_BUFFER_MEMORY, DEFAULT_KEYFRAME_MEMORY, DEFAULT_MAX_KEYFRAME_REACH)
        self._reset()

    def _reset(self):
        self.error_state = ErrorState.OK
        self.error_message = ''
        self.header = None
        self.screen = None
        self.global_color_table = None
        self.netscape = None
        self.application_extensions = []
        self.frames = []
        self.cache = None

    def _child_components(self):
        return (self.header, self.screen, self.global_color_table, self.netscape,
                *self.application_extensions, *self.frames)

    def _read_stream(self) -> bytes:
        if self.data is None:
            if self.file_path is None:
                raise ValueError("Не указан ни путь к GIF файлу, ни данные")
            with open(self.file_path, 'rb') as f:
                self.data = f.read()
        return self.data

    def load(self, path: Optional[str] = None) -> GifInfo:
        """Загружает GIF и возвращает его размеры, число кадров и задержки"""
        if path is not None:
            self.file_path = path
            self.data = None
        self.parse()
        return GifInfo(self.width, self.height, self.frame_count,
                       [frame.delay_ms for frame in self.frames])

    def parse(self) -> List[GifFrame]:
        """Парсит весь GIF поток и возвращает список кадров (пиксели не декодируются)"""
        stream = self._read_stream()
        self._reset()
        reader = ByteReader(stream)

        if self._read_preamble(reader):
            self._read_blocks(reader)
            self._compute_dependencies()

        self.cache = KeyframeCache(self.frames, self._render_frame,
                                   self.width * self.height * BYTES_PER_PIXEL, *self._limits)

        # Отсутствие GCE обычно для GIF87a и ошибкой потока не считается
        errors = [name for name in describe_state(self.consolidated_state)
                  if name != ErrorState.NO_GRAPHIC_CONTROL_EXTENSION.name]
        if errors:
            logger.warning("GIF разобран с ошибками: %s", ', '.join(errors))
        logger.debug("Каталог GIF: %dx%d, кадров: %d", self.width, self.height, len(self.frames))
        return self.frames

    def _read_preamble(self, reader: ByteReader) -> bool:
        """Заголовок, дескриптор экрана и глобальная таблица цветов"""
        self.header = GifHeader.decode(reader)
        if self.header.error_state:
            return False

        self.screen = LogicalScreenDescriptor.decode(reader)
        if self.screen.error_state:
            return False

        if self.screen.has_global_color_table:
            self.global_color_table = ColorTable.decode(reader, self.screen.global_color_table_size)
            if self.global_color_table.error_state:
                return False
        return True

    def _read_blocks(self, reader: ByteReader):
        pending_gce = None
        while True:
            code = reader.read_byte()
            if code == END_OF_STREAM:
                self.set_status(ErrorState.END_OF_INPUT_STREAM,
                                "Поток закончился до блока завершения (0x3B)")
                break

            if code == CODE_IMAGE_SEPARATOR:
                self._read_frame(reader, pending_gce)
                pending_gce = None
            elif code == CODE_EXTENSION_INTRODUCER:
                pending_gce = self._read_extension(reader, pending_gce)
            elif code == CODE_TRAILER:
                break
            elif code == CODE_BLOCK_TERMINATOR:
                self.set_status(ErrorState.UNEXPECTED_BLOCK_TERMINATOR,
                                f"Неожиданный терминатор блока в позиции {reader.position - 1}")
            else:
                # Неизвестный байт, пробуем продолжить
                self.set_status(ErrorState.BAD_DATA_BLOCK_INTRODUCER,
                                f"Неизвестный код блока 0x{code:02X} в позиции {reader.position - 1}")

    def _read_extension(self, reader: ByteReader,
                        pending_gce: Optional[GraphicControlExtension]) -> Optional[GraphicControlExtension]:
        """Читает расширение; возвращает GCE для следующего кадра"""
        label = reader.read_byte()
        if label == CODE_GRAPHIC_CONTROL_LABEL:
            return GraphicControlExtension.decode(reader)

        if label == CODE_APPLICATION_EXTENSION_LABEL:
            extension = ApplicationExtension.decode(reader)
            if NetscapeExtension.matches(extension):
                self.netscape = NetscapeExtension(extension)
            else:
                self.application_extensions.append(extension)
        elif label != END_OF_STREAM:
            # Комментарии, простой текст и неизвестные расширения
            reader.skip_sub_blocks()
        return pending_gce

    def _read_frame(self, reader: ByteReader, gce: Optional[GraphicControlExtension]):
        descriptor_offset = reader.position - 1
        descriptor = ImageDescriptor.decode(reader)
        local_color_table = None
        if descriptor.has_local_color_table:
            local_color_table = ColorTable.decode(reader, descriptor.local_color_table_size)

        frame = GifFrame(len(self.frames), descriptor_offset, reader.position, descriptor,
                         gce if gce is not None else GraphicControlExtension(),
                         local_color_table)
        if gce is None:
            frame.set_status(ErrorState.NO_GRAPHIC_CONTROL_EXTENSION,
                             f"Перед кадром {frame.index} нет расширения управления графикой")
        if frame.active_color_table(self.global_color_table) is None:
            frame.set_status(ErrorState.FRAME_HAS_NO_COLOR_TABLE,
                             f"У кадра {frame.index} нет ни локальной, ни глобальной таблицы цветов")

        TableBasedImageData.skip(reader)
        self.frames.append(frame)

    def _covers_screen(self, descriptor: ImageDescriptor) -> bool:
        return (descriptor.left == 0 and descriptor.top == 0
                and descriptor.width >= self.screen.width
                and descriptor.height >= self.screen.height)

    def _dependency_of(self, frame: GifFrame) -> Optional[int]:
        """Индекс кадра, от пикселей которого зависит базовое изображение frame"""
        if frame.previous_index is None:
            return None
        previous = self.frames[frame.previous_index]
        disposal = previous.disposal_method
        if disposal == DisposalMethod.NOT_SPECIFIED:
            return None

        # Непрозрачный кадр на весь экран полностью перекрывает основу
        if (self._covers_screen(frame.image_descriptor)
                and frame.image_descriptor.pixel_count > 0
                and frame.active_color_table(self.global_color_table) is not None
                and not frame.graphic_control_extension.has_transparent_color):
            return None

        if disposal == DisposalMethod.RESTORE_PREVIOUS and frame.previous_but1_index is not None:
            return frame.previous_but1_index
        if (disposal in (DisposalMethod.RESTORE_BACKGROUND, DisposalMethod.RESTORE_PREVIOUS)
                and self._covers_screen(previous.image_descriptor)):
            return None
        return frame.previous_index

    def _compute_dependencies(self):
        for frame in self.frames:
            frame.depends_on = self._dependency_of(frame)

    def _render_frame(self, frame: GifFrame) -> bytes:
        frame.decode_indices(self.data, self.screen.height)
        previous = self.frames[frame.previous_index] if frame.previous_index is not None else None
        previous_but1 = (self.frames[frame.previous_but1_index]
                         if frame.previous_but1_index is not None else None)
        return composite(frame, previous, previous_but1, self.screen,
                         self.global_color_table, self.options)

    def get_frame(self, frame_index: int) -> Optional[bytes]:
        """Получает указанный кадр в виде RGBA буфера с учетом всех предыдущих кадров"""
        if self.cache is None and (self.data is not None or self.file_path is not None):
            self.parse()

        if frame_index < 0 or frame_index >= len(self.frames):
            return None
        return self.cache.get(frame_index)

    def set_memory_limits(self, buffer_bytes: int, keyframe_bytes: int, max_reach: int):
        """
        Задаёт бюджет памяти под буферы кадров, под ключевые кадры
        и максимальную глубину обратного прохода (0 и меньше - без ограничения)
        """
        self._limits = (buffer_bytes, keyframe_bytes, max_reach)
        if self.cache is not None:
            self.cache.set_limits(*self._limits)

    def unload(self):
        """Освобождает все буферы кадров и сам поток"""
        if self.cache is not None:
            self.cache.clear()
        self.data = None
        self._reset()

    @property
    def memory_limits(self) -> Tuple[int, int, int]:
        return self._limits

    @property
    def width(self) -> int:
        return self.screen.width if self.screen is not None else 0

    @property
    def height(self) -> int:
        return self.screen.height if self.screen is not None else 0

    @property
    def frame_count(self) -> int:
        return len(self.frames)

    @property
    def loop_count(self) -> Optional[int]:
        """Число повторов из расширения NETSCAPE2.0 (0 - бесконечно, None - расширения нет)"""
        if self.netscape is None:
            return None
        return self.netscape.loop_count

    @property
    def background_color(self) -> Optional[Tuple[int, int, int]]:
        if self.screen is None or self.global_color_table is None:
            return None
        index = self.screen.background_color_index
        if index >= len(self.global_color_table):
            return None
        return self.global_color_table[index]

    def get_delay(self, frame_index: int) -> Optional[int]:
        """Задержка кадра в миллисекундах (None для несуществующего кадра)"""
        if frame_index < 0 or frame_index >= len(self.frames):
            return None
        return self.frames[frame_index].delay_ms

    def frame_state(self, frame_index: int) -> Optional[Dict]:
        if frame_index < 0 or frame_index >= len(self.frames):
            return None
        frame = self.frames[frame_index]
        state = frame.consolidated_state
        return {
            'index': frame.index,
            'delay_ms': frame.delay_ms,
            'disposal_method': frame.disposal_method.name,
            'depends_on': frame.depends_on,
            'keyframe': frame.keyframe,
            'keyframe_ready': frame.keyframe_ready,
            'loaded': frame.is_loaded,
            'requires_redraw': frame.requires_redraw,
            'errors': describe_state(state),
            'error_message': frame.error_message,
        }
