"""
Learning-style quiz tests
"""
import json

import pytest

from studyflow.learning_style import (
    PROFILES,
    QUIZ_QUESTIONS,
    STYLES,
    dominant_style,
    score_answers,
    summarize,
)


class TestQuestionTable:
    def test_thirty_questions_one_option_per_style(self):
        assert len(QUIZ_QUESTIONS) == 30
        assert [q["id"] for q in QUIZ_QUESTIONS] == list(range(1, 31))
        for q in QUIZ_QUESTIONS:
            assert sorted(o["style"] for o in q["options"]) == sorted(STYLES)

    def test_every_style_has_a_profile(self):
        for style in STYLES:
            assert {"name", "description", "strengths", "study_tips"} <= set(PROFILES[style])


class TestScoring:
    """Tally and dominant style"""

    def test_example_tally(self):
        answers = ["visual"] * 3 + ["auditory"] * 2 + ["reading"] * 2 + ["kinesthetic"]
        scores = score_answers(answers)
        assert scores == {"visual": 3, "auditory": 2, "reading": 2, "kinesthetic": 1}
        assert sum(scores.values()) == len(answers)
        assert dominant_style(scores) == "visual"

    def test_mapping_of_question_ids(self):
        scores = score_answers({"1": "reading", "2": "reading", "3": "visual"})
        assert scores == {"visual": 1, "auditory": 0, "reading": 2, "kinesthetic": 0}

    def test_unknown_style_rejected(self):
        with pytest.raises(ValueError):
            score_answers(["visual", "smell"])

    def test_unknown_question_rejected(self):
        with pytest.raises(ValueError):
            score_answers({"99": "visual"})

    def test_ties_go_to_later_style(self):
        assert dominant_style({"visual": 2, "auditory": 2, "reading": 0, "kinesthetic": 0}) == "auditory"
        assert dominant_style({"visual": 1, "auditory": 1, "reading": 1, "kinesthetic": 1}) == "kinesthetic"

    def test_summary(self):
        result = summarize({"visual": 1, "auditory": 0, "reading": 3, "kinesthetic": 0})
        assert result["dominant_style"] == "reading"
        assert result["secondary_styles"] == ["visual"]
        assert result["percentages"]["reading"] == 75.0
        assert result["profile"]["name"] == "Reading/Writing Learner"


class TestQuizRoutes:
    def test_questions(self, client):
        response = client.get('/quiz/questions')
        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['total'] == 30

    def test_score(self, client):
        answers = ["kinesthetic"] * 4 + ["visual"]
        response = client.post('/quiz/score', json={'answers': answers})
        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['dominant_style'] == 'kinesthetic'
        assert data['scores']['kinesthetic'] == 4

    def test_score_bad_style(self, client):
        response = client.post('/quiz/score', json={'answers': ['telepathic']})
        assert response.status_code == 400
        assert json.loads(response.data)['ok'] is False
