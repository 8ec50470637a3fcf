"""
Сборка полного изображения кадра.
Базовое изображение строится из предыдущих кадров по их методу утилизации,
затем поверх него рисуются пиксели текущего кадра.
Результат - RGBA буфер размером с логический экран.
"""

from dataclasses import dataclass
from typing import Optional

from gif_components import ColorTable, DisposalMethod, LogicalScreenDescriptor, interlaced_rows
from gif_errors import ErrorState
from gif_frame import GifFrame

TRANSPARENT = bytes((0, 0, 0, 0))
OPAQUE_BLACK = bytes((0, 0, 0, 255))
BYTES_PER_PIXEL = 4


@dataclass
class CompositorOptions:
    # Фон прозрачный, если индекс фона совпадает с прозрачным индексом кадра;
    # иначе используется непрозрачный чёрный
    zero_alpha_background: bool = True


def blank_canvas(screen: LogicalScreenDescriptor) -> bytearray:
    return bytearray(screen.width * screen.height * BYTES_PER_PIXEL)


def background_color(frame: GifFrame, screen: LogicalScreenDescriptor,
                     global_color_table: Optional[ColorTable],
                     options: CompositorOptions) -> bytes:
    """Цвет, которым восстанавливается фон для кадра frame"""
    index = screen.background_color_index
    gce = frame.graphic_control_extension
    if gce.has_transparent_color and gce.transparent_color_index == index:
        return TRANSPARENT if options.zero_alpha_background else OPAQUE_BLACK

    table = global_color_table if global_color_table is not None else frame.local_color_table
    if table is None:
        # Отсутствие таблицы записывается как FRAME_HAS_NO_COLOR_TABLE
        return OPAQUE_BLACK
    if index < len(table):
        return table.rgba()[index]

    frame.set_status(ErrorState.BAD_COLOR_INDEX,
                     f"Индекс цвета фона: {index}, размер таблицы: {len(table)}")
    return OPAQUE_BLACK


def fill_region(canvas: bytearray, screen: LogicalScreenDescriptor, left: int, top: int,
                width: int, height: int, color: bytes):
    """Заливает прямоугольник (обрезанный по границам экрана) цветом"""
    x_end = min(left + width, screen.width)
    if x_end <= left:
        return
    row = color * (x_end - left)
    for y in range(top, min(top + height, screen.height)):
        start = (y * screen.width + left) * BYTES_PER_PIXEL
        canvas[start:start + len(row)] = row


def build_base_image(frame: GifFrame, previous: Optional[GifFrame],
                     previous_but1: Optional[GifFrame], screen: LogicalScreenDescriptor,
                     global_color_table: Optional[ColorTable],
                     options: CompositorOptions) -> bytearray:
    """Базовое изображение кадра по методу утилизации предыдущего кадра"""
    if previous is None:
        return blank_canvas(screen)

    disposal = previous.disposal_method
    if disposal == DisposalMethod.RESTORE_PREVIOUS:
        if previous_but1 is not None and previous_but1.pixels is not None:
            return bytearray(previous_but1.pixels)
        disposal = DisposalMethod.RESTORE_BACKGROUND

    if disposal == DisposalMethod.NOT_SPECIFIED:
        return blank_canvas(screen)

    if previous.pixels is not None:
        base = bytearray(previous.pixels)
    else:
        # Предыдущий кадр недоступен - рисуем на пустом холсте
        base = blank_canvas(screen)

    if disposal == DisposalMethod.RESTORE_BACKGROUND:
        color = background_color(frame, screen, global_color_table, options)
        fill_region(base, screen, *previous.image_descriptor.region, color)
    return base


def paint_frame(canvas: bytearray, frame: GifFrame, indices: bytearray,
                color_table: ColorTable, screen: LogicalScreenDescriptor):
    """Накладывает пиксели кадра на холст с учётом прозрачности и чересстрочности"""
    descriptor = frame.image_descriptor
    width = descriptor.width
    span = min(descriptor.left + width, screen.width) - descriptor.left
    if span <= 0:
        return

    palette = color_table.rgba()
    palette_size = len(palette)
    transparent = frame.graphic_control_extension.transparent_index
    rows = interlaced_rows(descriptor.height) if descriptor.is_interlaced else range(descriptor.height)

    for source_row, row in enumerate(rows):
        y = descriptor.top + row
        source = source_row * width
        # Строки ниже экрана и строки, которые не декодировались, не рисуются
        if y >= screen.height or source >= len(indices):
            continue
        row_indices = indices[source:source + span]
        dest = (y * screen.width + descriptor.left) * BYTES_PER_PIXEL

        if transparent is None and max(row_indices) < palette_size:
            canvas[dest:dest + len(row_indices) * BYTES_PER_PIXEL] = b''.join(
                [palette[i] for i in row_indices])
            continue

        for x, index in enumerate(row_indices):
            if index == transparent:
                continue
            if index < palette_size:
                color = palette[index]
            else:
                color = OPAQUE_BLACK
                frame.set_status(ErrorState.BAD_COLOR_INDEX,
                                 f"Индекс цвета: {index}, размер таблицы: {palette_size}")
            start = dest + x * BYTES_PER_PIXEL
            canvas[start:start + BYTES_PER_PIXEL] = color


def composite(frame: GifFrame, previous: Optional[GifFrame], previous_but1: Optional[GifFrame],
              screen: LogicalScreenDescriptor, global_color_table: Optional[ColorTable],
              options: Optional[CompositorOptions] = None) -> bytes:
    """
    Возвращает итоговый RGBA буфер кадра.
    Индексы пикселей кадра должны быть декодированы заранее (GifFrame.decode_indices),
    пиксели предшественников берутся из их буферов, если те в памяти.
    """
    options = options or CompositorOptions()
    canvas = build_base_image(frame, previous, previous_but1, screen, global_color_table, options)

    color_table = frame.active_color_table(global_color_table)
    if color_table is None:
        frame.set_status(ErrorState.FRAME_HAS_NO_COLOR_TABLE,
                         f"У кадра {frame.index} нет ни локальной, ни глобальной таблицы цветов")
    elif frame.indexed_pixels is not None:
        paint_frame(canvas, frame, frame.indexed_pixels, color_table, screen)
    return bytes(canvas)
