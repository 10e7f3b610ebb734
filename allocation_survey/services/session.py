"""One respondent's survey session and the separate administrative channel.

Every respondent action and every admin command runs as one synchronous step
against the same state; the registry serialises access per respondent with a
lock.
"""
import asyncio
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import asdict, dataclass, field
from typing import Any

from allocation_survey.core.exceptions import NavigationBlockedError, SurveyValidationError
from allocation_survey.services.allocation import AllocationState, Outcomes, calc_outcomes
from allocation_survey.services.export import CSV_HEADERS, build_wide_row
from allocation_survey.services.flow import Flow, ScenarioInstance, build_flow_or_fallback
from allocation_survey.services.followups import FollowupOrchestrator, FollowupState
from allocation_survey.services.progress import ProgressController
from allocation_survey.services.rows import AnswerRow, RowStore
from allocation_survey.services.storage import KeyValueStore, ScopedStore, load_json, save_json
from allocation_survey.services.submission import IngestClient

logger = logging.getLogger(__name__)

GHOST_KEY = "SURVEY_GHOST_MODE"
CONFIG_KEY = "session_config"
DEMOGRAPHICS_KEY = "demographics"
SUBMITTED_KEY = "submitted"
MAX_LIVE_SESSIONS = 1024


@dataclass
class SessionConfig:
    seed: int | str = 12345
    group_key: str | None = None
    block_order: list[int] | None = None
    pool_tag: str | None = "ALT"
    amount: float = 100000
    currency: str = "USD"
    default_allocation: int = 50
    storage_name: str = "resp_followups_v1"
    reason_tags: list[str] = field(default_factory=lambda: ["BASE"])
    reason_min_length: int = 5
    mid_index: int = 14
    completion_code: str | None = None
    user_agent: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionConfig":
        known = set(cls.__dataclass_fields__)
        return cls(**{k: v for k, v in data.items() if k in known})


def make_completion_code(n: int, now_ms: int) -> str:
    """Fallback completion code when no external (panel provider) code was supplied."""
    year = time.gmtime(now_ms / 1000).tm_year
    h = 0
    for ch in f"{n}-{year}-{now_ms}":
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    digits = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    out = ""
    while True:
        h, r = divmod(h, 36)
        out = digits[r] + out
        if h == 0:
            break
    return f"JMP-{out}"


class SurveySession:
    """Respondent-facing operations over flow, progress, allocation, rows and follow-ups."""

    def __init__(
        self,
        store: KeyValueStore,
        config: SessionConfig | None = None,
        submitter: IngestClient | None = None,
        clock=time.time,
    ):
        self.store = store
        self.config = config or SessionConfig()
        self.submitter = submitter
        self._clock = clock

        cfg = self.config
        self.flow: Flow = build_flow_or_fallback(cfg.seed, cfg.group_key, cfg.block_order, cfg.pool_tag)
        n = len(self.flow)
        self.rows = RowStore(store, f"{cfg.storage_name}_{n}")
        self.progress = ProgressController(n, store)
        self.allocation = AllocationState(cfg.default_allocation)
        self.followups = FollowupOrchestrator(
            self.rows,
            pool_seed=cfg.seed,
            reason_tags=cfg.reason_tags,
            mid_index=cfg.mid_index,
            reason_min_length=cfg.reason_min_length,
            amount=cfg.amount,
        )
        self.finished = bool(load_json(store, SUBMITTED_KEY, False))
        self._ensure_completion_code()
        self.refresh()

    # ---------- derived state ----------

    @property
    def index(self) -> int:
        return self.progress.current_index

    @property
    def current(self) -> ScenarioInstance | None:
        if self.progress.is_complete:
            return None
        return self.flow[self.index]

    @property
    def current_row(self) -> AnswerRow | None:
        cur = self.current
        return self.rows.get(cur.order) if cur is not None else None

    @property
    def is_confirmed(self) -> bool:
        return self.current_row is not None

    @property
    def is_viewing_past(self) -> bool:
        return self.progress.is_viewing_past

    @property
    def ghost(self) -> bool:
        return bool(load_json(self.store, GHOST_KEY, False))

    def set_ghost(self, value: bool) -> None:
        save_json(self.store, GHOST_KEY, bool(value))
        logger.info("Ghost mode %s", "on" if value else "off")

    @property
    def completion_code(self) -> str | None:
        return load_json(self.store, self._finish_code_key)

    @property
    def _finish_code_key(self) -> str:
        return f"{self.config.storage_name}_{len(self.flow)}_finishCode"

    def _ensure_completion_code(self) -> None:
        if self.config.completion_code:
            save_json(self.store, self._finish_code_key, self.config.completion_code)
        elif load_json(self.store, self._finish_code_key) is None:
            code = make_completion_code(len(self.rows), int(self._clock() * 1000))
            save_json(self.store, self._finish_code_key, code)

    def refresh(self) -> None:
        """Re-enter the current screen: reset allocation input, reopen unanswered follow-ups."""
        cur = self.current
        row = self.current_row
        self.allocation.reset(
            confirmed=row is not None,
            viewing_past=self.is_viewing_past,
            stored_value=row.allocation_to_risky if row is not None else None,
        )
        self.followups.enter(cur, self.index, confirmed=row is not None)

    def outcomes(self) -> Outcomes | None:
        cur = self.current
        if cur is None:
            return None
        return calc_outcomes(
            self.config.amount, self.allocation.value, cur.safe, cur.up, cur.down, cur.probability
        )

    # ---------- allocation ----------

    def unlock(self) -> None:
        if self.current is None:
            raise NavigationBlockedError("Survey already complete")
        self.allocation.unlock()

    def set_allocation(self, *, option_b=None, option_a=None, drag=None, key=None, shift=False) -> int:
        if option_b is not None:
            return self.allocation.set_option_b_percent(option_b)
        if option_a is not None:
            return self.allocation.set_option_a_percent(option_a)
        if drag is not None:
            return self.allocation.drag_to(drag)
        if key is not None:
            return self.allocation.press_key(key, shift)
        raise SurveyValidationError("No allocation input given")

    def confirm(self) -> FollowupState:
        """Store the allocation and open the first pending follow-up (or advance)."""
        cur = self.current
        if cur is None:
            raise NavigationBlockedError("Survey already complete")
        if self.allocation.confirmed or self.is_confirmed:
            # double submit: the row exists already, nothing new to record
            if self.followups.is_open or self.is_viewing_past:
                return self.followups.state
            # answered frontier screen with nothing left to ask (e.g. after a reload)
            return self._after(FollowupState.NONE)

        value = self.allocation.confirm()
        row = AnswerRow(
            order=cur.order,
            scenario_id=cur.id,
            tag=cur.tag,
            safe=cur.safe,
            up=cur.up,
            down=cur.down,
            probability=cur.probability,
            allocation_to_risky=value,
            inflation=cur.inflation,
            is_baseline=cur.is_baseline,
            is_sanity=cur.is_sanity,
            is_last=cur.is_last,
            is_mirror=cur.is_mirror,
            pool_tag=cur.pool_tag,
            ts=int(self._clock() * 1000),
            user_agent=self.config.user_agent,
            ms_spent=self.allocation.elapsed_ms(),
        )
        if self.ghost:
            logger.info("Ghost mode: row for order %s not stored", cur.order)
        else:
            self.rows.insert_if_absent(row)
        return self._after(self.followups.on_confirm())

    def _after(self, state: FollowupState) -> FollowupState:
        if state is FollowupState.NONE:
            self.progress.go_next_linear()
            self.refresh()
        return state

    # ---------- follow-ups ----------

    def submit_reason(self, text: str | None) -> FollowupState:
        return self._after(self.followups.submit_reason(text))

    def submit_sanity(self, primary, secondary=None, other_text=None) -> FollowupState:
        return self._after(self.followups.submit_sanity(primary, secondary, other_text))

    def submit_mid_sanity(self, primary, secondary=None, other_text=None) -> FollowupState:
        return self._after(self.followups.submit_mid_sanity(primary, secondary, other_text))

    def continue_from_break(self) -> FollowupState:
        return self._after(self.followups.continue_from_break())

    def submit_final(self, text, ratings, inflation_effect=None, other_factors=None) -> FollowupState:
        return self._after(self.followups.submit_final(text, ratings, inflation_effect, other_factors))

    # ---------- navigation (respondent) ----------

    def go_back(self) -> bool:
        if self.followups.is_open:
            raise NavigationBlockedError("Finish the open question first")
        moved = self.progress.go_back()
        if moved:
            self.refresh()
        return moved

    def go_forward(self) -> bool:
        if self.followups.is_open:
            raise NavigationBlockedError("Finish the open question first")
        moved = self.progress.go_forward_within_visited()
        if moved:
            self.refresh()
        return moved

    # ---------- demographics & submission ----------

    def save_demographics(self, demo: dict[str, Any]) -> None:
        save_json(self.store, DEMOGRAPHICS_KEY, demo)

    @property
    def demographics(self) -> dict[str, Any]:
        return load_json(self.store, DEMOGRAPHICS_KEY, {}) or {}

    def build_meta(self) -> dict[str, Any]:
        rows = self.rows.all()
        first_base = next((r for r in rows if r.is_baseline), None)
        if first_base is not None:
            started = first_base.inflation
        else:
            started = self.flow[0].inflation if len(self.flow) else ""
        return {
            "started_inflation": started,
            "order_vector": self.flow.order_vector(),
            "pool_group": self.flow.group_key or "",
            "pool_seed": self.config.seed,
            "block_order": list(self.flow.block_order),
            "ua": self.config.user_agent,
            "completion_code": self.completion_code,
        }

    def build_submission(self) -> tuple[list[str], dict[str, Any]]:
        row = build_wide_row(self.rows.all(), self.demographics, self.build_meta())
        return list(CSV_HEADERS), row

    def submit(self) -> bool:
        """Send the wide row once. Raises SubmissionError; rows stay intact for a manual retry."""
        if not self.progress.is_complete:
            raise NavigationBlockedError("Survey not complete yet")
        if self.ghost:
            logger.info("Ghost mode: final submission skipped")
            self.finish()
            return False
        if self.submitter is None:
            raise SurveyValidationError("No ingestion endpoint configured")
        headers, row = self.build_submission()
        self.submitter.send(headers, row)
        self.finish()
        return True

    def finish(self) -> None:
        self.finished = True
        save_json(self.store, SUBMITTED_KEY, True)


class AdminChannel:
    """Privileged commands; the only way to jump or toggle ghost mode."""

    COMMANDS = ("prev", "next", "jump", "finish", "ghost")

    def __init__(self, session: SurveySession):
        self.session = session

    def prev(self) -> bool:
        if self.session.followups.is_open:
            return False
        self.session.progress.jump_to(max(0, self.session.index - 1))
        self.session.refresh()
        return True

    def next(self) -> bool:
        if self.session.followups.is_open:
            return False
        self.session.progress.jump_to(min(len(self.session.flow) - 1, self.session.index + 1))
        self.session.refresh()
        return True

    def jump(self, to: int) -> int:
        target = self.session.progress.jump_to(to)
        self.session.refresh()
        logger.info("Admin jump to index %s", target)
        return target

    def finish(self) -> bool:
        self.session.finish()
        return True

    def ghost(self, value: bool) -> bool:
        self.session.set_ghost(value)
        return bool(value)

    def dispatch(self, command: dict[str, Any]) -> Any:
        kind = command.get("type")
        if kind not in self.COMMANDS:
            raise ValueError(f"Unknown admin command: {kind}")
        if kind == "jump":
            return self.jump(int(command["to"]))
        if kind == "ghost":
            return self.ghost(bool(command.get("value")))
        return getattr(self, kind)()


class SessionRegistry:
    """Live sessions by id; a missing one is rebuilt from its stored config.

    At most ``max_live`` sessions stay in memory, least recently used out first.
    Locks of evicted or unknown sessions are dropped once nobody holds them.
    """

    def __init__(self, store: KeyValueStore, submitter_factory=None, max_live: int = MAX_LIVE_SESSIONS):
        self.store = store
        self.submitter_factory = submitter_factory
        self.max_live = max(int(max_live), 1)
        self._sessions: OrderedDict[str, SurveySession] = OrderedDict()
        self._locks: dict[str, asyncio.Lock] = {}
        self._guard = threading.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def lock_for(self, sid: str) -> asyncio.Lock:
        """Per-respondent lock held by the HTTP layer for the whole request."""
        with self._guard:
            if sid not in self._locks and len(self._locks) >= self.max_live:
                self._prune_locks()
            return self._locks.setdefault(sid, asyncio.Lock())

    def _prune_locks(self) -> None:
        # caller holds _guard
        idle = [s for s, lock in self._locks.items() if s not in self._sessions and not lock.locked()]
        for sid in idle:
            del self._locks[sid]

    def _remember(self, sid: str, session: SurveySession) -> None:
        with self._guard:
            self._sessions[sid] = session
            self._sessions.move_to_end(sid)
            while len(self._sessions) > self.max_live:
                old, _ = self._sessions.popitem(last=False)
                lock = self._locks.get(old)
                if lock is not None and not lock.locked():
                    del self._locks[old]
                logger.debug("Session %s evicted from memory", old[:8])

    def _submitter(self) -> IngestClient | None:
        return self.submitter_factory() if self.submitter_factory else None

    def create(self, sid: str, config: SessionConfig) -> SurveySession:
        scoped = ScopedStore(self.store, sid)
        save_json(scoped, CONFIG_KEY, config.to_dict())
        session = SurveySession(scoped, config, submitter=self._submitter())
        self._remember(sid, session)
        logger.info(
            "Session %s started group=%s", sid[:8], session.flow.group_key,
            extra={"sid": sid[:8], "group": session.flow.group_key},
        )
        return session

    def get(self, sid: str) -> SurveySession | None:
        with self._guard:
            session = self._sessions.get(sid)
            if session is not None:
                self._sessions.move_to_end(sid)
                return session
        scoped = ScopedStore(self.store, sid)
        stored = load_json(scoped, CONFIG_KEY)
        if not isinstance(stored, dict):
            return None
        session = SurveySession(scoped, SessionConfig.from_dict(stored), submitter=self._submitter())
        self._remember(sid, session)
        logger.info(
            "Session %s resumed at index %s", sid[:8], session.index,
            extra={"sid": sid[:8], "index": session.index},
        )
        return session
