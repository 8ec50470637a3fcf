"""
Кадр GIF анимации.
Кадры хранятся в общем списке и ссылаются на предшественников по индексу.
"""

from typing import Optional

from gif_components import ColorTable, DisposalMethod, GraphicControlExtension, ImageDescriptor
from gif_errors import ErrorState, GifComponent
from gif_lzw import TableBasedImageData
from gif_reader import ByteReader


class GifFrame(GifComponent):
    """Описание кадра и его лениво вычисляемые (и выгружаемые) пиксели"""

    def __init__(self, index: int, descriptor_offset: int, data_offset: int,
                 image_descriptor: ImageDescriptor,
                 graphic_control_extension: GraphicControlExtension,
                 local_color_table: Optional[ColorTable] = None):
        super().__init__()
        self.index = index
        self.descriptor_offset = descriptor_offset
        self.data_offset = data_offset
        self.image_descriptor = image_descriptor
        self.graphic_control_extension = graphic_control_extension
        self.local_color_table = local_color_table

        self.previous_index = index - 1 if index > 0 else None
        self.previous_but1_index = index - 2 if index > 1 else None
        # Кадр, от которого зависит базовое изображение (None - кадр независим)
        self.depends_on = self.previous_index

        self.image_data = None  # TableBasedImageData
        self.pixels = None  # RGBA буфер размером с логический экран
        self.requires_redraw = True
        self.composited_clean = False
        self.keyframe = False
        self.keyframe_ready = False

    def _child_components(self):
        return (self.image_descriptor, self.graphic_control_extension,
                self.local_color_table, self.image_data)

    @property
    def disposal_method(self) -> DisposalMethod:
        return self.graphic_control_extension.disposal_method

    @property
    def delay(self) -> int:
        """Задержка в сотых долях секунды"""
        return self.graphic_control_extension.delay_time

    @property
    def delay_ms(self) -> int:
        return self.graphic_control_extension.delay_time * 10

    @property
    def independent(self) -> bool:
        return self.depends_on is None

    @property
    def is_loaded(self) -> bool:
        return self.pixels is not None

    @property
    def is_complete(self) -> bool:
        """Пиксели в памяти и получены из полностью собранной цепочки кадров"""
        return self.pixels is not None and not self.requires_redraw

    @property
    def indexed_pixels(self) -> Optional[bytearray]:
        if self.image_data is None:
            return None
        return self.image_data.pixel_indexes

    def active_color_table(self, global_color_table: Optional[ColorTable]) -> Optional[ColorTable]:
        if self.local_color_table is not None:
            return self.local_color_table
        return global_color_table

    def decode_indices(self, stream: bytes, screen_height: Optional[int] = None) -> Optional[bytearray]:
        """
        Декомпрессирует индексы пикселей кадра из потока.

        Размеры из дескриптора не доверяются: если задана высота экрана,
        читаются только строки, попадающие на экран, и в любом случае
        не больше строк, чем могут дать сжатые данные.
        """
        descriptor = self.image_descriptor
        if descriptor.pixel_count < 1:
            self.set_status(ErrorState.FRAME_HAS_NO_IMAGE_DATA,
                            f"Кадр {self.index} не содержит данных изображения")
            return None
        if self.image_data is not None and self.image_data.pixel_indexes is not None:
            return self.image_data.pixel_indexes

        rows = descriptor.height
        if screen_height is not None:
            rows = descriptor.rows_on_screen(screen_height)
            if rows < 1:
                return None

        reader = ByteReader(stream, self.data_offset)
        available = TableBasedImageData.max_pixels(reader)
        if available < rows * descriptor.width:
            rows = max(1, -(-available // descriptor.width))
            self.set_status(ErrorState.TOO_FEW_PIXELS_IN_IMAGE_DATA,
                            f"Кадр {self.index}: изображение {descriptor.width}x{descriptor.height}, "
                            f"данных не больше чем на {available} пикселей")

        self.image_data = TableBasedImageData(reader, rows * descriptor.width)
        return self.image_data.pixel_indexes

    def unload(self):
        """Освобождает пиксели; описание кадра и его ошибки сохраняются"""
        self.pixels = None
        if self.image_data is not None:
            self.image_data.pixel_indexes = None

    def __repr__(self):
        return (f"GifFrame(index={self.index}, loaded={self.is_loaded}, "
                f"keyframe={self.keyframe}, requires_redraw={self.requires_redraw})")
