# medication/services/patterns.py
from datetime import date, timedelta
from typing import Iterable, List, Optional, Tuple
import logging

from django.db import transaction

from ..exceptions import InvalidArgument
from ..models import Medication, DosagePattern

logger = logging.getLogger(__name__)


def pattern_for_date(patterns: Iterable[DosagePattern], target_date: date) -> Optional[DosagePattern]:
    """
    Return the pattern whose validity contains ``target_date``.

    Overlapping patterns should not exist; if they do, the one that started
    latest wins. Returns None when no pattern covers the date.
    """
    candidates = [pattern for pattern in patterns if pattern.covers(target_date)]
    if not candidates:
        return None
    return max(candidates, key=lambda pattern: pattern.start_date)


def _ranges_overlap(start_a, end_a, start_b, end_b):
    # A null end date means the range is open-ended
    if end_b is not None and start_a > end_b:
        return False
    if end_a is not None and start_b > end_a:
        return False
    return True


def same_pattern(first: Optional[DosagePattern], second: Optional[DosagePattern]) -> bool:
    if first is None or second is None:
        return first is second
    if first is second:
        return True
    return first.pk is not None and first.pk == second.pk


class PatternHistory:
    """
    A medication's dosage patterns ordered by start date.

    Keeps a pointer to the single open pattern (null end date) and refuses
    any addition that would leave two open patterns or overlapping dates.
    """

    def __init__(self, patterns=()):
        self._patterns = sorted(patterns, key=lambda pattern: pattern.start_date)
        self._open_index = None
        for index, pattern in enumerate(self._patterns):
            if pattern.end_date is None:
                if self._open_index is not None:
                    raise InvalidArgument("Medication has more than one open dosage pattern")
                self._open_index = index

    def __iter__(self):
        return iter(self._patterns)

    def __len__(self):
        return len(self._patterns)

    @property
    def open_pattern(self) -> Optional[DosagePattern]:
        if self._open_index is None:
            return None
        return self._patterns[self._open_index]

    def pattern_for_date(self, target_date: date) -> Optional[DosagePattern]:
        return pattern_for_date(self._patterns, target_date)

    def overlapping(self, start_date: date, end_date: Optional[date],
                    exclude: Optional[DosagePattern] = None) -> List[DosagePattern]:
        return [
            pattern for pattern in self._patterns
            if pattern is not exclude
            and _ranges_overlap(pattern.start_date, pattern.end_date, start_date, end_date)
        ]

    def _pattern_to_close(self, start_date):
        candidates = [
            pattern for pattern in self._patterns
            if pattern.end_date is None or pattern.end_date >= start_date
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda pattern: pattern.start_date)

    def add(self, pattern: DosagePattern, close_previous: bool = True) -> Optional[DosagePattern]:
        """
        Add ``pattern``, optionally closing the pattern it supersedes.

        With ``close_previous`` the most recent pattern still valid on the new
        start date is closed the day before it. Without it (e.g. backfilling
        history) any date overlap is refused. Returns the closed pattern or
        None. Nothing is modified when an InvalidArgument is raised.
        """
        if pattern.end_date is not None and pattern.end_date < pattern.start_date:
            raise InvalidArgument("End date must be on or after the start date")

        to_close = self._pattern_to_close(pattern.start_date) if close_previous else None
        if to_close is not None and to_close.start_date >= pattern.start_date:
            raise InvalidArgument(
                f"New pattern must start after the pattern it replaces (started {to_close.start_date})"
            )

        if self.overlapping(pattern.start_date, pattern.end_date, exclude=to_close):
            raise InvalidArgument(
                "A pattern already exists for the specified date range. "
                "Close the previous pattern to replace it."
            )

        if to_close is not None:
            to_close.end_date = pattern.start_date - timedelta(days=1)

        self._patterns.append(pattern)
        self._patterns.sort(key=lambda item: item.start_date)
        self._open_index = None
        for index, item in enumerate(self._patterns):
            if item.end_date is None:
                self._open_index = index
        return to_close


def add_dosage_pattern(medication: Medication, pattern_sequence: List, start_date: date,
                       end_date: Optional[date] = None, notes: str = '',
                       close_previous: bool = True) -> Tuple[DosagePattern, Optional[DosagePattern]]:
    """
    Create a dosage pattern and close the one it supersedes in one transaction.

    The medication row and its patterns are locked so that concurrent
    writers cannot observe or produce two open patterns.

    Returns:
        tuple: (created DosagePattern, closed DosagePattern or None)

    Raises:
        InvalidArgument: If the new pattern overlaps existing ones
    """
    with transaction.atomic():
        locked = Medication.objects.select_for_update().get(pk=medication.pk)
        history = PatternHistory(
            DosagePattern.objects.select_for_update().filter(medication=locked)
        )

        pattern = DosagePattern(
            medication=locked,
            pattern_sequence=[float(dose) for dose in pattern_sequence],
            start_date=start_date,
            end_date=end_date,
            notes=notes or '',
        )
        closed = history.add(pattern, close_previous=close_previous)

        # The previous pattern must be closed before the new open one is inserted
        if closed is not None:
            closed.save(update_fields=['end_date', 'updated_at'])
            logger.info(
                f"Closed dosage pattern {closed.id} for medication {locked.id}, end date set to {closed.end_date}"
            )

        pattern.save()

    logger.info(
        f"Created dosage pattern {pattern.id} for medication {locked.id}, "
        f"pattern length {pattern.pattern_length}, start date {pattern.start_date}"
    )
    return pattern, closed
