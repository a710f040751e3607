"""按行切帧。

网络分块的边界是任意的：一个分块可能只包含半行，也可能包含好几行。
FrameDecoder 维护一段残留缓冲区，每收到一个分块就追加进去并按换行切开，
除最后一段（可能不完整）外全部作为完整帧输出，最后一段留作新的残留。

流结束时残留内容直接丢弃：没有换行结尾的数据不是合法帧。
"""

import codecs
from typing import AsyncIterable, AsyncIterator, List, Union

Chunk = Union[bytes, bytearray, str]


class FrameDecoder:
    """把任意切分的字节/文本分块还原成完整的协议行。

    - 字节分块使用增量 UTF-8 解码器，多字节字符被拆到两个分块时也能正确拼回；
      非法字节以替换字符处理，不会抛异常。
    - 行尾的 "\\r" 会被去掉，兼容 CRLF。
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""
        self._finished = False

    @property
    def pending(self) -> str:
        """当前尚未构成完整帧的残留文本。"""

        return self._buffer

    def feed(self, chunk: Chunk) -> List[str]:
        if self._finished:
            return []
        if isinstance(chunk, (bytes, bytearray)):
            text = self._decoder.decode(bytes(chunk))
        else:
            text = chunk
        if not text:
            return []
        self._buffer += text
        parts = self._buffer.split("\n")
        self._buffer = parts.pop()
        return [p[:-1] if p.endswith("\r") else p for p in parts]

    def finish(self) -> None:
        """流结束：丢弃残留与解码器中尚未完成的字节。"""

        self._decoder.reset()
        self._buffer = ""
        self._finished = True


async def iter_frames(chunks: AsyncIterable[Chunk]) -> AsyncIterator[str]:
    """把异步分块流转换成惰性的帧序列。"""

    decoder = FrameDecoder()
    try:
        async for chunk in chunks:
            for frame in decoder.feed(chunk):
                yield frame
    finally:
        decoder.finish()
