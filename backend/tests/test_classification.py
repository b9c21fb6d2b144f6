"""
Unit tests for keyword domain classification.
"""
import pytest

from fleet_assistant.services.ai.classification import GENERAL_DOMAIN, KeywordDomainClassifier


@pytest.mark.parametrize(
    "message,expected",
    [
        ("What's the fuel efficiency of vehicle ABC123?", ["fuel"]),
        ("Which trucks are due for MAINTENANCE?", ["maintenance"]),
        ("Show driver behavior scores", ["safety"]),
        ("Fuel costs and repair history for truck 7", ["fuel", "maintenance", "financial"]),
        ("Where is the GPS tracker on unit 12?", ["location"]),
        ("Hello there", [GENERAL_DOMAIN]),
    ],
)
def test_classify(message, expected):
    assert KeywordDomainClassifier().classify(message) == expected


def test_custom_vocabulary():
    classifier = KeywordDomainClassifier([("tires", ("tire", "tread"))])

    assert classifier.classify("Tread depth report") == ["tires"]
    assert classifier.classify("fuel usage") == [GENERAL_DOMAIN]
