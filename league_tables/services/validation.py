"""
MatchValidator - 比赛结果校验

职责：
1. 校验单场比赛结果（比分非负、两队不同、必填引用、轮次合法）
2. 纯函数，无 I/O，不抛异常，总是返回结构化结果
3. 多条错误可同时返回，每条带独立错误码

注意：
- 校验失败的比赛绝不会进入计算队列
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import List, Optional

from league_tables.services.errors import MatchValidationError
from league_tables.services.schemas import MatchResult, MatchStatus

logger = logging.getLogger(__name__)


class ValidationCode(str, Enum):
    MISSING_SCORE = "MISSING_SCORE"
    NEGATIVE_SCORE = "NEGATIVE_SCORE"
    TEAM_AGAINST_ITSELF = "TEAM_AGAINST_ITSELF"
    MISSING_REFERENCE = "MISSING_REFERENCE"
    INVALID_MATCHDAY = "INVALID_MATCHDAY"
    INVALID_STATUS = "INVALID_STATUS"
    STATUS_REVERTED = "STATUS_REVERTED"


@dataclass
class ValidationIssue:
    field: str
    code: ValidationCode
    message: str

    def to_dict(self) -> dict:
        data = asdict(self)
        data["code"] = self.code.value
        return data


@dataclass
class ValidationResult:
    valid: bool
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)

    @property
    def error_codes(self) -> List[str]:
        return [issue.code.value for issue in self.errors]

    def raise_for_errors(self) -> None:
        """存在错误时抛出 MatchValidationError"""
        if self.errors:
            summary = "; ".join(issue.message for issue in self.errors)
            raise MatchValidationError(f"Match validation failed: {summary}", issues=list(self.errors))

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "errors": [issue.to_dict() for issue in self.errors],
            "warnings": [issue.to_dict() for issue in self.warnings],
        }


_KNOWN_STATUSES = {status.value for status in MatchStatus}


def _is_int(value: object) -> bool:
    # bool 是 int 的子类，比分不接受 True/False
    return isinstance(value, int) and not isinstance(value, bool)


class MatchValidator:
    """
    比赛结果校验器

    规则顺序：
    1. 比赛结束时两队比分必须存在且 >= 0
    2. 主队 != 客队
    3. 联赛/赛季/球队引用非空
    4. 轮次（如有）为正整数
    """

    def validate(self, match: MatchResult) -> ValidationResult:
        errors: List[ValidationIssue] = []

        errors.extend(self._check_status(match))
        errors.extend(self._check_scores(match))
        errors.extend(self._check_teams(match))
        errors.extend(self._check_references(match))
        errors.extend(self._check_matchday(match))

        if errors:
            logger.debug(
                f"Match {match.match_id} rejected: {[issue.code.value for issue in errors]}"
            )
        return ValidationResult(valid=not errors, errors=errors)

    # ==================== 单项规则 ====================

    def _check_status(self, match: MatchResult) -> List[ValidationIssue]:
        if match.status not in _KNOWN_STATUSES:
            return [ValidationIssue(
                field="status",
                code=ValidationCode.INVALID_STATUS,
                message=f"Unknown match status {match.status!r}",
            )]
        return []

    def _check_scores(self, match: MatchResult) -> List[ValidationIssue]:
        issues: List[ValidationIssue] = []
        finished = match.status == MatchStatus.FINISHED.value

        for field_name, value in (("home_goals", match.home_goals), ("away_goals", match.away_goals)):
            if value is None:
                if finished:
                    issues.append(ValidationIssue(
                        field=field_name,
                        code=ValidationCode.MISSING_SCORE,
                        message=f"{field_name} is required for a finished match",
                    ))
                continue
            if not _is_int(value) or value < 0:
                issues.append(ValidationIssue(
                    field=field_name,
                    code=ValidationCode.NEGATIVE_SCORE,
                    message=f"{field_name} must be a non-negative integer, got {value!r}",
                ))
        return issues

    def _check_teams(self, match: MatchResult) -> List[ValidationIssue]:
        if match.home_team_id is not None and match.home_team_id == match.away_team_id:
            return [ValidationIssue(
                field="away_team_id",
                code=ValidationCode.TEAM_AGAINST_ITSELF,
                message=f"Team {match.home_team_id} cannot play against itself",
            )]
        return []

    def _check_references(self, match: MatchResult) -> List[ValidationIssue]:
        issues: List[ValidationIssue] = []
        for field_name in ("league_id", "season_id", "home_team_id", "away_team_id"):
            value = getattr(match, field_name)
            if value is None or (isinstance(value, str) and not value.strip()):
                issues.append(ValidationIssue(
                    field=field_name,
                    code=ValidationCode.MISSING_REFERENCE,
                    message=f"{field_name} is required",
                ))
        return issues

    def _check_matchday(self, match: MatchResult) -> List[ValidationIssue]:
        if match.matchday is None:
            return []
        if not _is_int(match.matchday) or match.matchday < 1:
            return [ValidationIssue(
                field="matchday",
                code=ValidationCode.INVALID_MATCHDAY,
                message=f"matchday must be a positive integer, got {match.matchday!r}",
            )]
        return []

    # ==================== 状态流转 ====================

    def validate_status_transition(
        self,
        old_status: Optional[str],
        new_status: str
    ) -> ValidationResult:
        """
        校验状态流转

        已结束的比赛改回其他状态不是错误，但会影响积分榜，返回警告提醒调用方。
        """
        warnings: List[ValidationIssue] = []
        if old_status == MatchStatus.FINISHED.value and new_status != MatchStatus.FINISHED.value:
            warnings.append(ValidationIssue(
                field="status",
                code=ValidationCode.STATUS_REVERTED,
                message=f"Finished match moved back to {new_status!r}; table will be recalculated",
            ))
        errors = self._check_status(MatchResult(None, None, None, None, None, status=new_status))
        return ValidationResult(valid=not errors, errors=errors, warnings=warnings)
