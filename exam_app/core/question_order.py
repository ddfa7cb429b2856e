"""Bidirectional mapping between presentation positions and original question indices."""

from __future__ import annotations

from dataclasses import dataclass
import random


@dataclass(slots=True, frozen=True)
class QuestionOrder:
    """Permutation of question indices plus its inverse.

    ``permutation[p]`` is the original index shown at presentation position
    ``p``; ``inverse[i]`` is the presentation position of original index ``i``.
    """

    permutation: tuple[int, ...]
    inverse: tuple[int, ...]

    @classmethod
    def from_permutation(cls, permutation: list[int] | tuple[int, ...]) -> "QuestionOrder":
        size = len(permutation)
        if sorted(permutation) != list(range(size)):
            raise ValueError(f"Not a permutation of 0..{size - 1}: {list(permutation)}")
        inverse = [0] * size
        for position, original in enumerate(permutation):
            inverse[original] = position
        return cls(permutation=tuple(permutation), inverse=tuple(inverse))

    @classmethod
    def identity(cls, size: int) -> "QuestionOrder":
        return cls.from_permutation(list(range(size)))

    @classmethod
    def shuffled(cls, size: int, rng: random.Random) -> "QuestionOrder":
        indices = list(range(size))
        rng.shuffle(indices)
        return cls.from_permutation(indices)

    def __len__(self) -> int:
        return len(self.permutation)

    def to_original(self, position: int) -> int:
        if not 0 <= position < len(self.permutation):
            raise IndexError(f"Question position {position} out of range")
        return self.permutation[position]

    def to_presentation(self, original_index: int) -> int:
        if not 0 <= original_index < len(self.inverse):
            raise IndexError(f"Question index {original_index} out of range")
        return self.inverse[original_index]
