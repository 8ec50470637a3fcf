"""
Побайтовое чтение GIF потока из памяти.
Конец данных не является исключением: методы возвращают END_OF_STREAM,
а вызывающий код сам решает, прерывать ли разбор текущего блока.
"""

import struct

END_OF_STREAM = -1


class ByteReader:
    """Читатель неизменяемого буфера с явной позицией"""

    def __init__(self, data: bytes, position: int = 0):
        self.data = data
        self.position = position

    @property
    def at_end(self) -> bool:
        return self.position >= len(self.data)

    def seek(self, position: int):
        self.position = position

    def read_byte(self) -> int:
        """Читает один байт или возвращает END_OF_STREAM"""
        if self.position >= len(self.data):
            return END_OF_STREAM
        value = self.data[self.position]
        self.position += 1
        return value

    def read_bytes(self, count: int) -> bytes:
        """Читает до count байт (в конце потока может вернуть меньше)"""
        chunk = self.data[self.position:self.position + count]
        self.position += len(chunk)
        return chunk

    def read_short(self) -> int:
        """Читает 16-битное беззнаковое число (little-endian)"""
        if self.position + 2 > len(self.data):
            self.position = len(self.data)
            return END_OF_STREAM
        value = struct.unpack_from('<H', self.data, self.position)[0]
        self.position += 2
        return value

    def skip_sub_blocks(self) -> int:
        """Пропускает подблоки данных вместе с терминатором, возвращает число пропущенных байт"""
        start = self.position
        while True:
            block_size = self.read_byte()
            if block_size == END_OF_STREAM or block_size == 0:
                break
            self.position = min(self.position + block_size, len(self.data))
        return self.position - start
