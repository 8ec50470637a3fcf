"""
Тесты для gif_parser.py
"""
import pytest
import os
import tempfile
from gif_builder import (BLUE, GREEN, PALETTE, RED, build_gif, frame, pixel_at, rgba, solid)
from gif_components import DisposalMethod
from gif_errors import ErrorState
from gif_parser import GIFParser, GifInfo


def two_frame_gif(**kwargs):
    return build_gif(2, 2, [
        frame(solid(2, 2, 1), 2, 2, delay=5),
        frame([2], 1, 1, left=1, top=1, delay=10),
    ], **kwargs)


class TestGIFParserLoad:
    """Тесты для загрузки и каталогизации GIF"""

    def test_load_from_data(self):
        parser = GIFParser(data=two_frame_gif())
        info = parser.load()
        assert info == GifInfo(2, 2, 2, [50, 100])
        assert parser.frame_count == 2
        assert parser.get_delay(1) == 100

    @pytest.mark.parametrize('index', [-1, 2])
    def test_get_delay_out_of_range(self, index):
        parser = GIFParser(data=two_frame_gif())
        parser.load()
        assert parser.get_delay(index) is None

    def test_load_from_file(self):
        """Тест загрузки GIF из файла"""
        with tempfile.NamedTemporaryFile(suffix='.gif', delete=False) as f:
            f.write(two_frame_gif())
            temp_path = f.name

        try:
            parser = GIFParser()
            info = parser.load(temp_path)
            assert info.frame_count == 2
            assert parser.file_path == temp_path
        finally:
            if os.path.exists(temp_path):
                os.unlink(temp_path)

    def test_missing_file(self):
        parser = GIFParser('/nonexistent/file.gif')
        with pytest.raises(FileNotFoundError):
            parser.load()

    def test_no_source(self):
        with pytest.raises(ValueError):
            GIFParser().load()

    def test_parse_returns_frames(self):
        """Каталог строится без декодирования пикселей"""
        frames = GIFParser(data=two_frame_gif()).parse()
        assert len(frames) == 2
        assert frames[1].image_descriptor.region == (1, 1, 1, 1)
        assert all(not frame.is_loaded for frame in frames)
        assert all(frame.image_data is None for frame in frames)

    def test_loop_count(self):
        parser = GIFParser(data=two_frame_gif(loop_count=3))
        parser.load()
        assert parser.loop_count == 3
        assert parser.netscape is not None

    def test_no_loop_count(self):
        parser = GIFParser(data=two_frame_gif())
        parser.load()
        assert parser.loop_count is None

    def test_background_color(self):
        parser = GIFParser(data=two_frame_gif(background_index=2))
        parser.load()
        assert parser.background_color == GREEN

    def test_skips_comment_and_other_extensions(self):
        comment = b'\x21\xfe\x05hello\x00'
        plain_text = b'\x21\x01\x0c' + bytes(12) + b'\x02hi\x00'
        xmp = b'\x21\xff\x0bXMP DataXMP\x01x\x00'
        data = build_gif(1, 1, [comment, plain_text, xmp, frame([1], 1, 1)])
        parser = GIFParser(data=data)
        parser.load()
        assert parser.frame_count == 1
        assert parser.error_state == ErrorState.OK
        assert [ext.identifier for ext in parser.application_extensions] == ['XMP Data']
        assert parser.get_frame(0) == rgba(RED)


class TestGIFParserErrors:
    """Тесты для ошибок потока"""

    def test_bad_signature(self):
        """Неверная сигнатура останавливает разбор после заголовка"""
        data = b'PNG' + two_frame_gif()[3:]
        parser = GIFParser(data=data)
        info = parser.load()
        assert info.frame_count == 0
        assert parser.header.test_state(ErrorState.BAD_SIGNATURE)
        assert parser.test_state(ErrorState.BAD_SIGNATURE)
        assert parser.get_frame(0) is None

    def test_truncated_screen_descriptor(self):
        parser = GIFParser(data=b'GIF89a\x02\x00')
        parser.load()
        assert parser.test_state(ErrorState.END_OF_INPUT_STREAM)
        assert parser.frame_count == 0

    def test_missing_trailer(self):
        parser = GIFParser(data=two_frame_gif(trailer=False))
        parser.load()
        assert parser.frame_count == 2
        assert parser.test_state(ErrorState.END_OF_INPUT_STREAM)

    def test_unexpected_block_terminator(self):
        data = build_gif(1, 1, [b'\x00', frame([1], 1, 1)])
        parser = GIFParser(data=data)
        parser.load()
        assert parser.frame_count == 1
        assert parser.test_state(ErrorState.UNEXPECTED_BLOCK_TERMINATOR)

    def test_bad_data_block_introducer(self):
        """Неизвестный байт записывается в ошибки, разбор продолжается"""
        data = build_gif(1, 1, [frame([1], 1, 1), b'\x99', frame([2], 1, 1)])
        parser = GIFParser(data=data)
        parser.load()
        assert parser.frame_count == 2
        assert parser.test_state(ErrorState.BAD_DATA_BLOCK_INTRODUCER)
        assert parser.get_frame(1) == rgba(GREEN)

    def test_missing_graphic_control_extension(self):
        """Кадр без GCE получает значения по умолчанию"""
        data = build_gif(1, 1, [frame([1], 1, 1, gce=False)], version=b'87a')
        parser = GIFParser(data=data)
        parser.load()
        first = parser.frames[0]
        assert first.disposal_method == DisposalMethod.DO_NOT_DISPOSE
        assert first.delay == 0
        assert first.test_state(ErrorState.NO_GRAPHIC_CONTROL_EXTENSION)
        assert parser.get_frame(0) == rgba(RED)

    def test_frame_without_color_table(self):
        data = build_gif(1, 1, [frame([1], 1, 1)], global_colors=None)
        parser = GIFParser(data=data)
        parser.load()
        assert parser.frames[0].test_state(ErrorState.FRAME_HAS_NO_COLOR_TABLE)
        assert parser.get_frame(0) == bytes(4)

    def test_truncated_sub_block(self):
        """Обрезанный подблок данных не ломает последующие запросы"""
        data = build_gif(4, 4, [
            frame(solid(4, 4, 1), 4, 4),
            frame([2, 3] * 8, 4, 4),
        ], trailer=False)
        parser = GIFParser(data=data[:-3])
        parser.load()
        assert parser.frame_count == 2

        pixels = parser.get_frame(1)
        assert len(pixels) == 4 * 4 * 4
        assert parser.frames[1].test_state(ErrorState.DATA_BLOCK_TOO_SHORT)

        first = parser.get_frame(0)
        assert first == rgba(RED) * 16
        assert parser.frames[0].consolidated_state & ErrorState.DATA_BLOCK_TOO_SHORT == 0
        assert parser.get_frame(1) == pixels


class TestDependencies:
    """Тесты для зависимостей кадров"""

    def _parse(self, frames, width=2, height=2):
        parser = GIFParser(data=build_gif(width, height, frames))
        parser.parse()
        return parser.frames

    def test_first_frame_independent(self):
        frames = self._parse([frame([1], 1, 1)])
        assert frames[0].independent

    def test_partial_frame_depends_on_previous(self):
        frames = self._parse([frame(solid(2, 2, 1), 2, 2), frame([2], 1, 1)])
        assert frames[1].depends_on == 0

    def test_full_opaque_frame_independent(self):
        frames = self._parse([frame([1], 1, 1), frame(solid(2, 2, 2), 2, 2)])
        assert frames[1].independent

    def test_full_transparent_frame_depends_on_previous(self):
        frames = self._parse([frame([1], 1, 1), frame(solid(2, 2, 2), 2, 2, transparent=0)])
        assert frames[1].depends_on == 0

    def test_restore_previous_depends_on_frame_before(self):
        frames = self._parse([
            frame(solid(2, 2, 1), 2, 2),
            frame([2], 1, 1, disposal=DisposalMethod.RESTORE_PREVIOUS),
            frame([3], 1, 1, left=1),
        ])
        assert frames[2].depends_on == 0

    def test_full_screen_restore_background_independent(self):
        frames = self._parse([
            frame(solid(2, 2, 1), 2, 2, disposal=DisposalMethod.RESTORE_BACKGROUND),
            frame([3], 1, 1),
        ])
        assert frames[1].independent

    def test_partial_restore_background_depends_on_previous(self):
        frames = self._parse([
            frame(solid(2, 2, 1), 2, 2),
            frame([2], 1, 1, disposal=DisposalMethod.RESTORE_BACKGROUND),
            frame([3], 1, 1, left=1),
        ])
        assert frames[2].depends_on == 1


class TestGetFrame:
    """Тесты для получения собранных кадров"""

    def test_get_frame_composites(self):
        parser = GIFParser(data=two_frame_gif())
        pixels = parser.get_frame(1)
        assert len(pixels) == 2 * 2 * 4
        assert pixel_at(pixels, 2, 0, 0) == rgba(RED)
        assert pixel_at(pixels, 2, 1, 1) == rgba(GREEN)

    @pytest.mark.parametrize('index', [-1, 2, 100])
    def test_get_frame_out_of_range(self, index):
        parser = GIFParser(data=two_frame_gif())
        parser.load()
        assert parser.get_frame(index) is None

    def test_get_frame_idempotent(self):
        parser = GIFParser(data=two_frame_gif())
        parser.load()
        assert parser.get_frame(1) == parser.get_frame(1)

    def test_local_color_table(self):
        data = build_gif(1, 1, [frame([1], 1, 1, local_colors=[BLUE, GREEN])])
        parser = GIFParser(data=data)
        assert parser.get_frame(0) == rgba(GREEN)

    def test_transparent_background_option(self):
        """Фон, совпадающий с прозрачным индексом, может быть непрозрачным чёрным"""
        frames = [
            frame(solid(2, 2, 1), 2, 2, disposal=DisposalMethod.RESTORE_BACKGROUND),
            frame([3], 1, 1, transparent=0),
        ]
        transparent = GIFParser(data=build_gif(2, 2, frames))
        opaque = GIFParser(data=build_gif(2, 2, frames), zero_alpha_background=False)
        assert pixel_at(transparent.get_frame(1), 2, 1, 1) == bytes(4)
        assert pixel_at(opaque.get_frame(1), 2, 1, 1) == bytes((0, 0, 0, 255))
        assert pixel_at(opaque.get_frame(1), 2, 0, 0) == rgba(BLUE)

    def test_unload(self):
        parser = GIFParser(data=two_frame_gif())
        parser.load()
        parser.get_frame(1)
        parser.unload()
        assert parser.frame_count == 0
        assert parser.data is None
        assert parser.get_frame(0) is None

    def test_frame_state(self):
        parser = GIFParser(data=two_frame_gif())
        parser.load()
        parser.get_frame(1)
        state = parser.frame_state(1)
        assert state['delay_ms'] == 100
        assert state['disposal_method'] == 'DO_NOT_DISPOSE'
        assert state['depends_on'] == 0
        assert state['loaded']
        assert not state['requires_redraw']
        assert state['errors'] == []
        assert parser.frame_state(5) is None

    def test_huge_descriptor_on_small_screen(self):
        """Дескриптор 60000x60000 при 16 пикселях данных не приводит к огромному буферу"""
        data = build_gif(4, 4, [frame(solid(4, 4, 1), 60000, 60000)])
        parser = GIFParser(data=data)
        pixels = parser.get_frame(0)
        assert len(pixels) == 4 * 4 * 4
        assert pixels[:16] == rgba(RED) * 4
        assert pixels[16:] == bytes(12 * 4)
        first = parser.frames[0]
        assert first.test_state(ErrorState.TOO_FEW_PIXELS_IN_IMAGE_DATA)
        assert len(first.indexed_pixels) <= 60000

    def test_rows_below_screen_not_decoded(self):
        parser = GIFParser(data=build_gif(2, 2, [frame(solid(2, 6, 2), 2, 6)]))
        assert parser.get_frame(0) == rgba(GREEN) * 4
        assert len(parser.frames[0].indexed_pixels) == 4
        assert parser.frames[0].consolidated_state & ErrorState.TOO_FEW_PIXELS_IN_IMAGE_DATA == 0

    def test_palette_colors(self):
        parser = GIFParser(data=build_gif(4, 1, [frame([0, 1, 2, 3], 4, 1)]))
        pixels = parser.get_frame(0)
        assert [pixel_at(pixels, 4, x, 0) for x in range(4)] == [rgba(c) for c in PALETTE]
