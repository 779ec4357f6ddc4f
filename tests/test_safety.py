from evermore_agents.empathy import EmpathyEngine
from evermore_agents.safety import (
    SCAM_WARNING,
    EscalationContact,
    ResponseType,
    RiskSeverity,
    ScamType,
    WellbeingConcern,
    WellbeingGuard,
)


class TestWellbeingAssessment:
    def test_safe_message(self):
        assessment = WellbeingGuard().assess_wellbeing("What a lovely morning for a walk in the park")
        assert assessment.overall_risk == RiskSeverity.NONE
        assert assessment.concerns == ()
        assert assessment.response_type == ResponseType.SUPPORTIVE
        assert assessment.suggested_response == ""
        assert assessment.risk_justification == "Safe"

    def test_suicidal_ideation_is_an_emergency(self):
        assessment = WellbeingGuard().assess_wellbeing("I want to end my life")
        assert assessment.overall_risk == RiskSeverity.CRITICAL
        assert assessment.concerns[0].type == WellbeingConcern.SUICIDAL_IDEATION
        assert assessment.requires_immediate_action
        assert assessment.response_type == ResponseType.EMERGENCY
        assert "988" in assessment.suggested_response

    def test_medical_emergency(self):
        assessment = WellbeingGuard().assess_wellbeing("I have chest pain and can't breathe")
        assert assessment.overall_risk == RiskSeverity.CRITICAL
        assert assessment.concerns[0].type == WellbeingConcern.MEDICAL_EMERGENCY
        assert "911" in assessment.suggested_response

    def test_abuse_is_escalated(self):
        assessment = WellbeingGuard().assess_wellbeing("My nephew threatens me and takes my money")
        assert assessment.overall_risk == RiskSeverity.CRITICAL
        assert assessment.response_type == ResponseType.ESCALATE
        assert "1-800-677-1116" in assessment.suggested_response

    def test_emotion_raises_loneliness(self):
        guard = WellbeingGuard()
        text = "I feel lonely today"
        assert guard.assess_wellbeing(text).overall_risk == RiskSeverity.NONE

        emotion = EmpathyEngine().detect_emotion(text)
        assessment = guard.assess_wellbeing(text, emotion)
        assert assessment.overall_risk == RiskSeverity.LOW
        assert assessment.response_type == ResponseType.COMFORT
        assert assessment.suggested_response.startswith("I understand that feeling lonely is painful.")

    def test_recurring_concerns(self):
        guard = WellbeingGuard(recurrence_threshold=3)
        results = [guard.assess_wellbeing("I want to end my life") for _ in range(3)]
        assert [result.concerns[0].is_recurring for result in results] == [False, False, True]
        assert guard.get_concern_history()[WellbeingConcern.SUICIDAL_IDEATION] == 3

        guard.clear_history()
        assert guard.get_concern_history() == {}
        assert guard.assessment_log == []

    def test_assessment_log_is_bounded(self):
        guard = WellbeingGuard()
        for _ in range(WellbeingGuard.MAX_ASSESSMENT_LOG + 1):
            guard.assess_wellbeing("Good morning")
        assert len(guard.assessment_log) == WellbeingGuard.TRIMMED_ASSESSMENT_LOG

    def test_escalation_contacts_are_sorted(self):
        guard = WellbeingGuard(
            escalation_contacts=[
                EscalationContact(name="Sam", relationship="son", priority=2, escalation_level=RiskSeverity.HIGH)
            ]
        )
        guard.add_escalation_contact(
            EscalationContact(
                name="Dr. Lee", relationship="doctor", priority=1, escalation_level=RiskSeverity.CRITICAL
            )
        )
        assert [contact.name for contact in guard.escalation_contacts] == ["Dr. Lee", "Sam"]


class TestScamDetection:
    def test_lottery_scam(self):
        scam = WellbeingGuard().detect_scam("They said I won the lottery and must claim your prize")
        assert scam.is_scam_detected
        assert scam.scam_type == ScamType.LOTTERY
        assert scam.risk_level == RiskSeverity.MODERATE
        assert set(scam.red_flags) == {"lottery", "prize", "claim your prize"}
        assert scam.suggested_response == SCAM_WARNING

    def test_grandparent_scam_is_critical(self):
        scam = WellbeingGuard().detect_scam("A man says my grandchild is in jail after a car accident")
        assert scam.scam_type == ScamType.GRANDPARENT
        assert scam.risk_level == RiskSeverity.CRITICAL

    def test_no_scam(self):
        scam = WellbeingGuard().detect_scam("Let me know the weather tomorrow")
        assert not scam.is_scam_detected
        assert scam.risk_level == RiskSeverity.NONE
        assert scam.red_flags == ()
