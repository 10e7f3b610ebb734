"""Current index and furthest-visited high-water mark, persisted on every change."""
import logging
from collections.abc import Callable

from allocation_survey.services.storage import KeyValueStore, load_int, save_json

logger = logging.getLogger(__name__)

IDX_KEY = "progress_idx_v1"
MAX_KEY = "progress_maxVisited_v1"
LENGTH_KEY = "progress_length_v1"


class ProgressController:
    """Append-only navigation over a flow of ``length`` screens.

    Respondents may move back and forth inside ``[0, furthest_visited_index]``;
    only ``go_next_linear`` (after a completed answer) and the admin-only
    ``jump_to`` move past it. ``current_index == length`` means the flow is done.
    """

    def __init__(
        self,
        length: int,
        store: KeyValueStore | None = None,
        on_exit: Callable[[], None] | None = None,
    ):
        self.length = max(int(length), 0)
        self.store = store
        self.on_exit = on_exit
        self.current_index = 0
        self.furthest_visited_index = 0
        self._restore()

    # ---------- persistence ----------

    def _restore(self) -> None:
        if self.store is None:
            return
        stored_length = load_int(self.store, LENGTH_KEY, -1)
        if stored_length not in (-1, self.length):
            # Flow definition changed under a stored session: start over
            logger.info("Flow length changed (%s -> %s); progress reset", stored_length, self.length)
            self._persist()
            return
        # current_index == length (flow done) must survive a reload
        idx = load_int(self.store, IDX_KEY, 0)
        furthest = load_int(self.store, MAX_KEY, 0)
        self.furthest_visited_index = min(max(furthest, 0), self.length)
        self.current_index = min(max(idx, 0), self.furthest_visited_index)

    def _persist(self) -> None:
        if self.store is None:
            return
        save_json(self.store, IDX_KEY, self.current_index)
        save_json(self.store, MAX_KEY, self.furthest_visited_index)
        save_json(self.store, LENGTH_KEY, self.length)

    # ---------- queries ----------

    @property
    def is_viewing_past(self) -> bool:
        return self.current_index < self.furthest_visited_index

    @property
    def is_complete(self) -> bool:
        return self.current_index >= self.length

    @property
    def percent_done(self) -> int:
        if not self.length:
            return 0
        return round(self.current_index / self.length * 100)

    # ---------- operations ----------

    def mark_visited(self, index: int) -> None:
        new = max(self.furthest_visited_index, min(int(index), self.length))
        if new != self.furthest_visited_index:
            self.furthest_visited_index = new
            self._persist()

    def go_back(self) -> bool:
        if self.current_index <= 0:
            if self.on_exit is not None:
                self.on_exit()
            return False
        self.current_index -= 1
        self._persist()
        return True

    def go_forward_within_visited(self) -> bool:
        if self.current_index >= self.furthest_visited_index:
            return False
        self.current_index += 1
        self._persist()
        return True

    def go_next_linear(self) -> bool:
        if self.current_index >= self.length:
            return False
        self.current_index += 1
        self.furthest_visited_index = max(self.furthest_visited_index, self.current_index)
        self._persist()
        return True

    def jump_to(self, index: int) -> int:
        """Administrative jump; clamps into the flow and bypasses the visited bound."""
        target = min(max(int(index), 0), max(self.length - 1, 0))
        self.current_index = target
        self.furthest_visited_index = max(self.furthest_visited_index, target)
        self._persist()
        return target
