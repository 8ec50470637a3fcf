"""
Кеш собранных кадров с ограничением памяти.

Обычные кадры хранятся в FIFO очереди ограниченного размера, ключевые кадры
(каждый keyframe_interval-й) в очередь не попадают и не вытесняются.
Для сборки кадра, которого нет в памяти, кеш идёт по ссылкам depends_on назад
до собранного или независимого кадра и перерисовывает цепочку вперёд.
"""

import logging
import math
from collections import deque
from typing import Callable, List, Optional, Tuple

from gif_frame import GifFrame

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_MEMORY = 100 * 1024 * 1024
DEFAULT_KEYFRAME_MEMORY = 15 * 1024 * 1024
DEFAULT_MAX_KEYFRAME_REACH = 10
MIN_KEYFRAME_INTERVAL = 10


class KeyframeCache:
    """Управляет тем, какие кадры держать в памяти и как собирать остальные"""

    def __init__(self, frames: List[GifFrame], render: Callable[[GifFrame], bytes],
                 bytes_per_frame: int,
                 buffer_bytes: int = DEFAULT_BUFFER_MEMORY,
                 keyframe_bytes: int = DEFAULT_KEYFRAME_MEMORY,
                 max_reach: int = DEFAULT_MAX_KEYFRAME_REACH):
        """
        Args:
            frames: все кадры потока по порядку
            render: функция, собирающая RGBA буфер кадра из его предшественников
            bytes_per_frame: размер одного буфера (ширина * высота * 4)
        """
        self.frames = frames
        self._render = render
        self.bytes_per_frame = max(1, bytes_per_frame)
        self._queue = deque()
        self.set_limits(buffer_bytes, keyframe_bytes, max_reach)

    def set_limits(self, buffer_bytes: int, keyframe_bytes: int, max_reach: int):
        """Применяет новые ограничения памяти и пересчитывает ключевые кадры"""
        self.buffer_bytes = buffer_bytes
        self.keyframe_bytes = keyframe_bytes
        self.max_reach = max_reach
        self.queue_capacity = max(1, buffer_bytes // self.bytes_per_frame)
        self.keyframe_interval = self._compute_keyframe_interval()
        logger.debug("Лимиты кеша: очередь %d кадров, интервал ключевых кадров %d, глубина %d",
                     self.queue_capacity, self.keyframe_interval, self.max_reach)

        for frame in self.frames:
            frame.keyframe = self.keyframe_interval > 0 and frame.index % self.keyframe_interval == 0
            if frame.keyframe:
                if frame.index in self._queue:
                    self._queue.remove(frame.index)
            elif frame.is_loaded and frame.index not in self._queue:
                # Кадр перестал быть ключевым, но остался в памяти
                self._queue.append(frame.index)

        self._trim()
        self._refresh_keyframe_readiness()

    def _compute_keyframe_interval(self) -> int:
        """0 - ключевые кадры отключены"""
        if self.keyframe_bytes <= 0 or not self.frames:
            return 0
        affordable = self.keyframe_bytes // self.bytes_per_frame
        if affordable <= 0:
            return 0
        return max(MIN_KEYFRAME_INTERVAL, math.ceil(len(self.frames) / affordable))

    def get(self, index: int) -> bytes:
        """Возвращает собранный RGBA буфер кадра index"""
        target = self.frames[index]
        if not target.is_complete:
            chain, reached = self._walk(index, self.max_reach)
            if not reached and self._prepare_keyframes(index):
                chain, reached = self._walk(index, self.max_reach)
            if not reached:
                logger.warning("Кадр %d: за %d шагов не найден собранный предшественник, "
                               "кадр будет собран из неполной основы", index, self.max_reach)
            self._replay(chain)

        self._trim(keep=index)
        self._refresh_keyframe_readiness()
        return target.pixels

    def _walk(self, index: int, max_reach: int) -> Tuple[List[int], bool]:
        """
        Идёт по зависимостям назад от кадра index.
        Возвращает цепочку кадров для перерисовки (от index к началу) и признак того,
        что цепочка упирается в собранный или независимый кадр.
        """
        chain = [index]
        current = self.frames[index]
        hops = 0
        while not current.independent:
            dependency = self.frames[current.depends_on]
            # Собранный ключевой кадр тоже is_complete, на нём проход и останавливается
            if dependency.is_complete:
                return chain, True
            if 0 < max_reach <= hops:
                return chain, False
            chain.append(dependency.index)
            current = dependency
            hops += 1
        return chain, True

    def _prepare_keyframes(self, index: int) -> bool:
        """
        Собирает несобранные ключевые кадры перед index по возрастанию.
        Каждый следующий ключевой кадр опирается на предыдущий, поэтому глубина
        прохода здесь не ограничивается. Возвращает True, если что-то было собрано.
        """
        rebuilt = False
        for frame in self.frames[:index]:
            if not frame.keyframe or frame.is_complete:
                continue
            chain, _ = self._walk(frame.index, 0)
            logger.debug("Сборка ключевого кадра %d (цепочка из %d кадров)", frame.index, len(chain))
            self._replay(chain)
            rebuilt = True
        return rebuilt

    def _replay(self, chain: List[int]):
        """Перерисовывает цепочку от самого раннего кадра к запрошенному"""
        for index in reversed(chain):
            frame = self.frames[index]
            self._make_room(frame)
            if not frame.keyframe:
                self._queue.append(index)

            dependency = None if frame.independent else self.frames[frame.depends_on]
            frame.requires_redraw = dependency is not None and (
                dependency.pixels is None or dependency.requires_redraw)
            frame.pixels = self._render(frame)
            frame.composited_clean = not frame.requires_redraw

    def _make_room(self, frame: GifFrame):
        """Освобождает место в очереди под кадр, не трогая его зависимость"""
        if frame.index in self._queue:
            self._queue.remove(frame.index)
        if frame.keyframe:
            return
        protected = (frame.index, frame.depends_on)
        while len(self._queue) >= self.queue_capacity:
            victim = next((i for i in self._queue if i not in protected), None)
            if victim is None:
                break
            self._evict(victim)

    def _trim(self, keep: Optional[int] = None):
        while len(self._queue) > self.queue_capacity:
            victim = next((i for i in self._queue if i != keep), None)
            if victim is None:
                break
            self._evict(victim)

    def _evict(self, index: int):
        self._queue.remove(index)
        self.frames[index].unload()
        logger.debug("Кадр %d выгружен из памяти", index)

    def _refresh_keyframe_readiness(self):
        """
        Ключевой кадр готов, если он собран и все кадры после предыдущего
        готового ключевого кадра были собраны без ошибок.
        """
        segment_clean = True
        for frame in self.frames:
            clean = frame.composited_clean
            if frame.keyframe:
                frame.keyframe_ready = segment_clean and clean and frame.is_complete
                if frame.keyframe_ready:
                    segment_clean = True
                    continue
            else:
                frame.keyframe_ready = False
            segment_clean = segment_clean and clean

    def clear(self):
        """Выгружает все кадры, включая ключевые"""
        for frame in self.frames:
            frame.unload()
            frame.requires_redraw = True
            frame.composited_clean = False
            frame.keyframe_ready = False
        self._queue.clear()

    def resident_indices(self) -> List[int]:
        return [frame.index for frame in self.frames if frame.is_loaded]

    def queued_indices(self) -> List[int]:
        return list(self._queue)
