"""
Data Models for STRATLAB
Strategy condition tree, indicator specifications and evaluation results
"""
import uuid
from enum import Enum
from typing import Annotated, Iterator, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator


def new_id() -> str:
    return uuid.uuid4().hex


class IndicatorKind(str, Enum):
    PRICE = 'PRICE'
    VOLUME = 'VOLUME'
    MA = 'MA'
    EMA = 'EMA'
    RSI = 'RSI'
    MACD = 'MACD'
    BOLLINGER = 'BOLLINGER'
    STOCHASTIC = 'STOCHASTIC'
    OBV = 'OBV'
    ATR = 'ATR'


class PriceField(str, Enum):
    OPEN = 'OPEN'
    HIGH = 'HIGH'
    LOW = 'LOW'
    CLOSE = 'CLOSE'
    ADJ_CLOSE = 'ADJ_CLOSE'


class ComparisonOperator(str, Enum):
    GT = '>'
    GTE = '>='
    EQ = '='
    LTE = '<='
    LT = '<'
    NE = '!='


class LogicalOperator(str, Enum):
    AND = 'AND'
    OR = 'OR'


class SignalKind(str, Enum):
    BUY = 'BUY'
    SELL = 'SELL'


class Bar(BaseModel):
    """OHLCV Bar"""
    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    date: str
    open: float
    high: float
    low: float
    close: float
    adjClose: float
    volume: float


# ---------------------------------------------------------------------------
# Indicator specifications (one model per kind)
# ---------------------------------------------------------------------------

class _IndicatorSpecBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra='forbid')

    @property
    def kind(self) -> IndicatorKind:
        return IndicatorKind(self.type)

    @property
    def warmup(self) -> int:
        """Number of leading bars for which the indicator is undefined"""
        return 0


class PriceSpec(_IndicatorSpecBase):
    type: Literal['PRICE'] = 'PRICE'
    priceType: PriceField = PriceField.CLOSE


class VolumeSpec(_IndicatorSpecBase):
    type: Literal['VOLUME'] = 'VOLUME'


class MASpec(_IndicatorSpecBase):
    type: Literal['MA'] = 'MA'
    period: int = Field(20, ge=1)
    priceType: PriceField = PriceField.CLOSE

    @property
    def warmup(self) -> int:
        return self.period - 1


class EMASpec(_IndicatorSpecBase):
    type: Literal['EMA'] = 'EMA'
    period: int = Field(12, ge=1)
    priceType: PriceField = PriceField.CLOSE

    @property
    def warmup(self) -> int:
        return self.period - 1


class RSISpec(_IndicatorSpecBase):
    type: Literal['RSI'] = 'RSI'
    period: int = Field(14, ge=1)

    @property
    def warmup(self) -> int:
        return self.period


class MACDSpec(_IndicatorSpecBase):
    type: Literal['MACD'] = 'MACD'
    fastPeriod: int = Field(12, ge=1)
    slowPeriod: int = Field(26, ge=1)
    signalPeriod: int = Field(9, ge=1)
    macdPart: Literal['macd', 'signal', 'histogram'] = 'macd'

    @property
    def warmup(self) -> int:
        line = max(self.fastPeriod, self.slowPeriod) - 1
        if self.macdPart == 'macd':
            return line
        return line + self.signalPeriod - 1


class BollingerSpec(_IndicatorSpecBase):
    type: Literal['BOLLINGER'] = 'BOLLINGER'
    period: int = Field(20, ge=1)
    stdDev: float = Field(2.0, ge=0, allow_inf_nan=False)
    bandPart: Literal['upper', 'middle', 'lower'] = 'upper'

    @property
    def warmup(self) -> int:
        return self.period - 1


class StochasticSpec(_IndicatorSpecBase):
    type: Literal['STOCHASTIC'] = 'STOCHASTIC'
    kPeriod: int = Field(14, ge=1)
    dPeriod: int = Field(3, ge=1)
    slowing: int = Field(3, ge=1)
    stochPart: Literal['k', 'd'] = 'k'

    @property
    def warmup(self) -> int:
        smoothed_k = self.kPeriod - 1 + self.slowing - 1
        if self.stochPart == 'k':
            return smoothed_k
        return smoothed_k + self.dPeriod - 1


class OBVSpec(_IndicatorSpecBase):
    type: Literal['OBV'] = 'OBV'


class ATRSpec(_IndicatorSpecBase):
    type: Literal['ATR'] = 'ATR'
    period: int = Field(14, ge=1)

    @property
    def warmup(self) -> int:
        return self.period


IndicatorSpec = Annotated[
    Union[
        PriceSpec, VolumeSpec, MASpec, EMASpec, RSISpec,
        MACDSpec, BollingerSpec, StochasticSpec, OBVSpec, ATRSpec,
    ],
    Field(discriminator='type'),
]

INDICATOR_SPEC_ADAPTER: TypeAdapter = TypeAdapter(IndicatorSpec)


# ---------------------------------------------------------------------------
# Parameter descriptors (input bounds for condition builders)
# ---------------------------------------------------------------------------

class ConditionParameter(BaseModel):
    """Named indicator parameter with optional input bounds"""
    name: str
    value: Union[float, str]
    min: Optional[float] = None
    max: Optional[float] = None
    step: Optional[float] = None
    options: Optional[List[str]] = None


_PRICE_OPTIONS = [f.value for f in PriceField]


def _period(value: int, upper: int = 100) -> ConditionParameter:
    return ConditionParameter(name='period', value=value, min=1, max=upper, step=1)


def parameter_descriptors(kind: IndicatorKind) -> List[ConditionParameter]:
    """Default parameter list for an indicator kind, with the bounds a form should enforce."""
    kind = IndicatorKind(kind)
    if kind == IndicatorKind.PRICE:
        return [ConditionParameter(name='priceType', value='CLOSE', options=_PRICE_OPTIONS)]
    if kind in (IndicatorKind.VOLUME, IndicatorKind.OBV):
        return []
    if kind == IndicatorKind.MA:
        return [_period(20, 200), ConditionParameter(name='priceType', value='CLOSE', options=_PRICE_OPTIONS)]
    if kind == IndicatorKind.EMA:
        return [_period(12, 200), ConditionParameter(name='priceType', value='CLOSE', options=_PRICE_OPTIONS)]
    if kind == IndicatorKind.RSI:
        return [_period(14)]
    if kind == IndicatorKind.MACD:
        return [
            ConditionParameter(name='fastPeriod', value=12, min=1, max=100, step=1),
            ConditionParameter(name='slowPeriod', value=26, min=1, max=100, step=1),
            ConditionParameter(name='signalPeriod', value=9, min=1, max=100, step=1),
            ConditionParameter(name='macdPart', value='macd', options=['macd', 'signal', 'histogram']),
        ]
    if kind == IndicatorKind.BOLLINGER:
        return [
            _period(20),
            ConditionParameter(name='stdDev', value=2, min=0.1, max=10, step=0.1),
            ConditionParameter(name='bandPart', value='upper', options=['upper', 'middle', 'lower']),
        ]
    if kind == IndicatorKind.STOCHASTIC:
        return [
            ConditionParameter(name='kPeriod', value=14, min=1, max=100, step=1),
            ConditionParameter(name='dPeriod', value=3, min=1, max=100, step=1),
            ConditionParameter(name='slowing', value=3, min=1, max=100, step=1),
            ConditionParameter(name='stochPart', value='k', options=['k', 'd']),
        ]
    if kind == IndicatorKind.ATR:
        return [_period(14)]
    raise ValueError(f"Unknown indicator kind: {kind}")


# ---------------------------------------------------------------------------
# Condition tree
# ---------------------------------------------------------------------------

class LiteralTarget(BaseModel):
    """Right-hand side that is a constant number"""
    model_config = ConfigDict(frozen=True)

    kind: Literal['value'] = 'value'
    value: float = Field(allow_inf_nan=False)


class IndicatorTarget(BaseModel):
    """Right-hand side that is another indicator, e.g. MA(10) > MA(20)"""
    model_config = ConfigDict(frozen=True)

    kind: Literal['indicator'] = 'indicator'
    indicator: IndicatorSpec


ComparisonTarget = Annotated[Union[LiteralTarget, IndicatorTarget], Field(discriminator='kind')]


class Condition(BaseModel):
    """Indicator compared against a literal or another indicator"""
    id: str = Field(default_factory=new_id)
    indicator: IndicatorSpec
    operator: ComparisonOperator = ComparisonOperator.GT
    target: ComparisonTarget = Field(default_factory=lambda: LiteralTarget(value=0.0))

    def compare_to_value(self, value: float) -> 'Condition':
        return self.model_copy(update={'target': LiteralTarget(value=value)})

    def compare_to_indicator(self, spec: IndicatorSpec) -> 'Condition':
        return self.model_copy(update={'target': IndicatorTarget(indicator=spec)})

    def indicator_specs(self) -> Iterator[IndicatorSpec]:
        yield self.indicator
        if isinstance(self.target, IndicatorTarget):
            yield self.target.indicator


class ConditionGroup(BaseModel):
    """Flat list of conditions joined by one logical operator"""
    id: str = Field(default_factory=new_id)
    conditions: List[Condition] = Field(default_factory=list)
    operator: LogicalOperator = LogicalOperator.AND


class TradeRule(BaseModel):
    """Condition groups joined by one logical operator, tagged BUY or SELL"""
    id: str = Field(default_factory=new_id)
    type: SignalKind
    conditionGroups: List[ConditionGroup] = Field(default_factory=list)
    operator: LogicalOperator = LogicalOperator.AND

    def indicator_specs(self) -> Iterator[IndicatorSpec]:
        for group in self.conditionGroups:
            for condition in group.conditions:
                yield from condition.indicator_specs()


class MoneyManagement(BaseModel):
    """Position sizing and risk settings (percentages are 0-100)"""
    initialCapital: float = Field(10_000_000.0, gt=0)
    positionSizing: float = Field(20.0, gt=0, le=100)
    maxPositions: int = Field(5, ge=1)
    stopLoss: Optional[float] = Field(5.0, ge=0, le=100)
    takeProfit: Optional[float] = Field(20.0, ge=0)
    trailingStop: Optional[float] = Field(None, ge=0, le=100)


class StrategyDraft(BaseModel):
    """Strategy content supplied by its author"""
    name: str = ''
    description: str = ''
    isPublic: bool = False
    tags: List[str] = Field(default_factory=list)
    buyRule: TradeRule = Field(default_factory=lambda: TradeRule(type=SignalKind.BUY))
    sellRule: TradeRule = Field(default_factory=lambda: TradeRule(type=SignalKind.SELL))
    moneyManagement: MoneyManagement = Field(default_factory=MoneyManagement)

    @model_validator(mode='after')
    def _check_rule_kinds(self):
        if self.buyRule.type != SignalKind.BUY:
            raise ValueError('buyRule must be tagged BUY')
        if self.sellRule.type != SignalKind.SELL:
            raise ValueError('sellRule must be tagged SELL')
        return self

    def indicator_specs(self) -> Iterator[IndicatorSpec]:
        yield from self.buyRule.indicator_specs()
        yield from self.sellRule.indicator_specs()


class Strategy(StrategyDraft):
    """Stored Strategy"""
    id: str
    userId: str
    createdAt: int
    updatedAt: int

    def draft(self) -> StrategyDraft:
        return StrategyDraft.model_validate(self.model_dump(include=set(StrategyDraft.model_fields)))


class StrategyListItem(BaseModel):
    """Strategy summary for list views"""
    id: str
    name: str
    description: str
    createdAt: int
    updatedAt: int
    userId: str
    isPublic: bool
    tags: List[str] = []


class StrategyFilter(BaseModel):
    """List query options"""
    searchTerm: Optional[str] = None
    tags: Optional[List[str]] = None
    isPublic: Optional[bool] = None
    sortBy: Literal['name', 'createdAt', 'updatedAt'] = 'updatedAt'
    sortOrder: Literal['asc', 'desc'] = 'desc'


class StrategyPage(BaseModel):
    """One page of list results; cursor is None on the last page"""
    items: List[StrategyListItem]
    cursor: Optional[str] = None


# ---------------------------------------------------------------------------
# Evaluation output
# ---------------------------------------------------------------------------

class SignalEvent(BaseModel):
    """Discrete BUY/SELL transition"""
    index: int
    date: str
    type: SignalKind


class StrategySignals(BaseModel):
    """Per-bar rule truth values and the signal events derived from them"""
    bars: int
    warmup: int
    buy: List[bool]
    sell: List[bool]
    events: List[SignalEvent] = []
