"""
Document Records
Conversion between the typed strategy models and the stored document shape:

    condition = {id, type, parameters: [{name, value, min?, max?, step?, options?}],
                 operator, value | (valueType, valueParameters)}
    strategy  = {id, name, ..., buyRules: [rule], sellRules: [rule], moneyManagement}
"""
from typing import Any, Dict, List

from pydantic import ValidationError

from stratlab.errors import ConfigurationError
from stratlab.models import (
    INDICATOR_SPEC_ADAPTER, ComparisonOperator, Condition, ConditionGroup, IndicatorKind,
    IndicatorSpec, IndicatorTarget, LiteralTarget, MoneyManagement, SignalKind, Strategy,
    TradeRule, parameter_descriptors,
)


def _errors(e: ValidationError) -> List[str]:
    return [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]


def spec_from_parameters(kind: str, parameters: List[Dict[str, Any]]) -> IndicatorSpec:
    try:
        kind = IndicatorKind(kind)
    except ValueError:
        raise ConfigurationError(f"Unknown indicator kind: {kind!r}")

    values = {}
    for param in parameters or []:
        if 'name' not in param or 'value' not in param:
            raise ConfigurationError(f"{kind.value}: parameter entries need a name and a value")
        values[param['name']] = param['value']

    try:
        return INDICATOR_SPEC_ADAPTER.validate_python({**values, 'type': kind.value})
    except ValidationError as e:
        problems = _errors(e)
        raise ConfigurationError(f"Invalid {kind.value} parameters: {'; '.join(problems)}", problems)


def spec_to_parameters(spec: IndicatorSpec) -> List[Dict[str, Any]]:
    values = spec.model_dump(mode='json', exclude={'type'})
    parameters = []
    for descriptor in parameter_descriptors(spec.kind):
        param = descriptor.model_dump(exclude_none=True)
        param['value'] = values[descriptor.name]
        parameters.append(param)
    return parameters


def condition_from_record(record: Dict[str, Any]) -> Condition:
    has_value = record.get('value') is not None
    has_indicator = record.get('valueType') is not None
    if has_value and has_indicator:
        raise ConfigurationError(
            f"Condition {record.get('id')!r} sets both a literal value and a valueType; choose one"
        )
    if not has_value and not has_indicator:
        raise ConfigurationError(f"Condition {record.get('id')!r} has nothing to compare against")

    indicator = spec_from_parameters(record.get('type'), record.get('parameters'))
    if has_indicator:
        target = IndicatorTarget(
            indicator=spec_from_parameters(record['valueType'], record.get('valueParameters')),
        )
    else:
        try:
            target = LiteralTarget(value=record['value'])
        except ValidationError as e:
            raise ConfigurationError(f"Invalid comparison value: {record['value']!r}", _errors(e))

    try:
        operator = ComparisonOperator(record.get('operator'))
    except ValueError:
        raise ConfigurationError(f"Unknown comparison operator: {record.get('operator')!r}")

    fields = {'indicator': indicator, 'operator': operator, 'target': target}
    if record.get('id'):
        fields['id'] = record['id']
    return Condition(**fields)


def condition_to_record(condition: Condition) -> Dict[str, Any]:
    record: Dict[str, Any] = {
        'id': condition.id,
        'type': condition.indicator.kind.value,
        'parameters': spec_to_parameters(condition.indicator),
        'operator': ComparisonOperator(condition.operator).value,
    }
    if isinstance(condition.target, IndicatorTarget):
        record['valueType'] = condition.target.indicator.kind.value
        record['valueParameters'] = spec_to_parameters(condition.target.indicator)
    else:
        record['value'] = condition.target.value
    return record


def _with_id(record: Dict[str, Any], fields: Dict[str, Any]) -> Dict[str, Any]:
    if record.get('id'):
        fields['id'] = record['id']
    return fields


def rule_from_record(record: Dict[str, Any], expected: SignalKind) -> TradeRule:
    groups = [
        _with_id(group, {
            'operator': group.get('operator', 'AND'),
            'conditions': [condition_from_record(c) for c in group.get('conditions') or []],
        })
        for group in record.get('conditionGroups') or []
    ]
    try:
        rule = TradeRule(**_with_id(record, {
            'type': record.get('type', expected),
            'operator': record.get('operator', 'AND'),
            'conditionGroups': [ConditionGroup(**g) for g in groups],
        }))
    except ValidationError as e:
        problems = _errors(e)
        raise ConfigurationError(f"Invalid {expected.value} rule: {'; '.join(problems)}", problems)
    if rule.type != expected:
        raise ConfigurationError(f"Expected a {expected.value} rule, got {rule.type.value}")
    return rule


def rule_to_record(rule: TradeRule) -> Dict[str, Any]:
    return {
        'id': rule.id,
        'type': rule.type.value,
        'operator': rule.operator.value,
        'conditionGroups': [
            {
                'id': group.id,
                'operator': group.operator.value,
                'conditions': [condition_to_record(c) for c in group.conditions],
            }
            for group in rule.conditionGroups
        ],
    }


def _single_rule(record: Dict[str, Any], key: str, expected: SignalKind) -> TradeRule:
    rules = record.get(key) or []
    if len(rules) > 1:
        raise ConfigurationError(f"{key} holds {len(rules)} rules; a strategy has exactly one")
    if not rules:
        return TradeRule(type=expected)
    return rule_from_record(rules[0], expected)


def strategy_from_record(record: Dict[str, Any]) -> Strategy:
    buy_rule = _single_rule(record, 'buyRules', SignalKind.BUY)
    sell_rule = _single_rule(record, 'sellRules', SignalKind.SELL)
    try:
        return Strategy(
            id=record.get('id'),
            userId=record.get('userId'),
            createdAt=record.get('createdAt'),
            updatedAt=record.get('updatedAt'),
            name=record.get('name', ''),
            description=record.get('description', ''),
            isPublic=record.get('isPublic', False),
            tags=record.get('tags') or [],
            buyRule=buy_rule,
            sellRule=sell_rule,
            moneyManagement=MoneyManagement(**(record.get('moneyManagement') or {})),
        )
    except ValidationError as e:
        problems = _errors(e)
        raise ConfigurationError(f"Invalid strategy record: {'; '.join(problems)}", problems)


def strategy_to_record(strategy: Strategy) -> Dict[str, Any]:
    return {
        'id': strategy.id,
        'name': strategy.name,
        'description': strategy.description,
        'createdAt': strategy.createdAt,
        'updatedAt': strategy.updatedAt,
        'userId': strategy.userId,
        'buyRules': [rule_to_record(strategy.buyRule)],
        'sellRules': [rule_to_record(strategy.sellRule)],
        'moneyManagement': strategy.moneyManagement.model_dump(mode='json'),
        'isPublic': strategy.isPublic,
        'tags': list(strategy.tags),
    }
