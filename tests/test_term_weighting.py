import pytest

from compliance_review.errors import RulebookError
from compliance_review.term_weighting import IDF_FLOOR, TermWeightingModel, tokenize

CORPUS = [
    "The University cannot provide indemnification",
    "Payment terms must be NET 30 days",
    "Publication rights must be preserved",
]


@pytest.fixture
def model():
    return TermWeightingModel(CORPUS)


def test_tokenize_lowercases_strips_punctuation_and_short_words():
    assert tokenize("The U.S. Sponsor, an LLC, shall pay!") == ["the", "sponsor", "llc", "shall", "pay"]


def test_tokenize_empty():
    assert tokenize("") == []
    assert tokenize("a an of") == []


def test_empty_corpus_rejected():
    with pytest.raises(RulebookError):
        TermWeightingModel([])


def test_idf_is_floored_for_common_terms(model):
    # "must" is in two of three documents: ln(3/3) == 0
    assert model.idf("must") == IDF_FLOOR
    assert model.idf("indemnification") > model.idf("must")


def test_unseen_terms_get_highest_idf(model):
    assert model.idf("arbitration") > model.idf("indemnification")


def test_self_similarity_is_one(model):
    text = "The University cannot provide indemnification"
    assert model.similarity(text, text) == 1.0


def test_similarity_is_symmetric_and_bounded(model):
    a = "Payment terms must be NET 30 days after invoice"
    b = "Payment within thirty days of invoice"
    s = model.similarity(a, b)
    assert s == model.similarity(b, a)
    assert 0.0 < s < 1.0


def test_no_shared_terms_is_zero(model):
    assert model.similarity("indemnification clause", "publication rights") == 0.0


def test_empty_text_is_zero(model):
    assert model.similarity("", "Payment terms") == 0.0
    assert model.similarity("of a", "Payment terms") == 0.0


def test_rank_orders_best_first(model):
    docs = [
        "Publication rights are preserved for research",
        "Sponsor will pay invoices NET 30",
        "Payment terms NET 30 days",
    ]
    ranked = model.rank("payment terms net 30", docs)
    assert [i for i, _ in ranked][0] == 2
    assert ranked[-1][0] == 0
    assert ranked[-1][1] == 0.0
