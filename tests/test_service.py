import pytest

from intake_pipeline.errors import ExtractionContractViolation
from intake_pipeline.schema import ExtractionRequest
from intake_pipeline.service import (
    PARSE_FAILURE_REASON,
    SERVICE_FAILURE_REASON,
    UNREADABLE_AMOUNT_REASON,
    UNREADABLE_MILEAGE_REASON,
    extract_order,
    normalise_model_response,
    parse_json_object,
    strip_code_fence,
)

from conftest import FakeExtractor, order_json

OIL = [{"workName": "Замена масла", "quantity": 1, "price": 1200, "total": 1200}]


def text_request(text="ЗАКАЗ-НАРЯД №15"):
    return ExtractionRequest(source_name="order.docx", text=text)


def test_fenced_and_unfenced_responses_parse_identically():
    body = order_json(OIL)
    fenced = f"```json\n{body}\n```"
    assert parse_json_object(fenced) == parse_json_object(body)


def test_fence_without_language_tag():
    assert strip_code_fence('```\n{"a": 1}\n```') == '{"a": 1}'


def test_prose_around_object_uses_brace_fallback():
    content = 'Вот результат распознавания:\n{"plateNumber": "А123ВС77", "items": []}\nГотово.'
    assert parse_json_object(content) == {"plateNumber": "А123ВС77", "items": []}


@pytest.mark.parametrize("content", ["", "no json here", "{broken", "[1, 2, 3]", "} reversed {"])
def test_unrecoverable_responses_raise_contract_violation(content):
    with pytest.raises(ExtractionContractViolation):
        parse_json_object(content)


def test_normalise_reads_header_fields_and_items():
    order = normalise_model_response(order_json(OIL))

    assert order.plate_number == "А123ВС77"
    assert order.vin == "XTA210990Y2765432"
    assert order.mileage == 120500
    assert order.city == "Москва"
    assert len(order.items) == 1
    assert order.items[0].work_name == "Замена масла"
    assert order.items[0].total == 1200
    assert order.needs_operator_review is False
    assert order.review_reason is None


def test_normalise_coerces_numbers_and_fills_defaults():
    items = [
        {"workName": "Диагностика", "price": "1 500,50 руб."},
        {"work_name": "Фильтр", "quantity": "2", "price": 350},
    ]
    order = normalise_model_response(order_json(items, mileage="85 000 км", plateNumber="null"))

    first, second = order.items
    assert first.quantity == 1
    assert first.price == 1500.5
    assert first.total == 1500.5
    assert second.quantity == 2
    assert second.total == 700
    assert order.mileage == 85000
    assert order.plate_number is None


def test_nameless_items_are_dropped_and_flag_review():
    items = [{"workName": "Замена масла", "price": 1200}, {"price": 500}, "junk"]
    order = normalise_model_response(order_json(items))

    assert [item.work_name for item in order.items] == ["Замена масла"]
    assert order.needs_operator_review is True
    assert order.review_reason


def test_model_review_flag_gets_default_reason():
    order = normalise_model_response(order_json(OIL, needsOperatorReview=True))
    assert order.needs_operator_review is True
    assert order.review_reason == "Требует проверки оператором"


def test_extract_order_returns_parsed_order_and_keeps_source_text():
    extractor = FakeExtractor(response=f"```json\n{order_json(OIL)}\n```")
    order = extract_order(extractor, text_request("ЗАКАЗ-НАРЯД №15"))

    assert extractor.requests[0].source_name == "order.docx"
    assert order.raw_text == "ЗАКАЗ-НАРЯД №15"
    assert order.items[0].work_name == "Замена масла"


def test_unparseable_response_becomes_review_stub():
    order = extract_order(FakeExtractor(response="Извините, не могу прочитать документ."), text_request())

    assert order.items == ()
    assert order.needs_operator_review is True
    assert order.review_reason.startswith(PARSE_FAILURE_REASON)
    assert "Извините" in order.review_reason


def test_empty_response_becomes_review_stub():
    order = extract_order(FakeExtractor(response=None), text_request())
    assert order.needs_operator_review is True
    assert order.review_reason.startswith(PARSE_FAILURE_REASON)


def test_extractor_failure_becomes_review_stub():
    order = extract_order(FakeExtractor(error=TimeoutError("read timed out")), text_request())

    assert order.items == ()
    assert order.needs_operator_review is True
    assert order.review_reason.startswith(SERVICE_FAILURE_REASON)
    assert "read timed out" in order.review_reason


def test_mileage_beyond_integer_range_is_discarded_and_flagged():
    order = normalise_model_response(order_json(OIL, mileage=99999999999999999999))

    assert order.mileage is None
    assert order.needs_operator_review is True
    assert UNREADABLE_MILEAGE_REASON in order.review_reason


def test_unreadable_mileage_text_is_flagged():
    order = normalise_model_response(order_json(OIL, mileage="не указан"))
    assert order.mileage is None
    assert order.review_reason == UNREADABLE_MILEAGE_REASON


@pytest.mark.parametrize("price", ["1.200,50", "1,200.50", "1 200,50 ₽", "1200.5"])
def test_grouped_amounts_keep_their_decimal_part(price):
    order = normalise_model_response(order_json([{"workName": "Ремонт", "price": price}]))

    assert order.items[0].price == 1200.5
    assert order.needs_operator_review is False


def test_thousands_grouping_without_decimals():
    order = normalise_model_response(order_json([{"workName": "Ремонт", "price": "1.200.000"}]))
    assert order.items[0].price == 1200000


def test_unreadable_price_flags_the_item_by_name():
    items = [{"workName": "Кузовной ремонт", "price": "договорная"}, {"workName": "Мойка", "price": 300}]
    order = normalise_model_response(order_json(items))

    assert order.items[0].price == 0
    assert order.needs_operator_review is True
    assert order.review_reason == f"{UNREADABLE_AMOUNT_REASON}: Кузовной ремонт"


def test_model_reason_without_flag_does_not_trigger_review():
    order = normalise_model_response(order_json(OIL, reviewReason="Плохое качество скана"))
    assert order.needs_operator_review is False
    assert order.review_reason is None


def test_model_reason_is_kept_alongside_detected_problems():
    order = normalise_model_response(
        order_json(OIL, mileage="???", needsOperatorReview=True, reviewReason="Размыт номер")
    )
    assert order.review_reason == f"Размыт номер; {UNREADABLE_MILEAGE_REASON}"
