"""
Message composition for LINE pushes.

Pure functions: a reminder (or a missed-activity fact) goes in, a
`ComposedMessage` comes out. The patient's name is shown only when the message
goes to a caregiver group; in a 1:1 chat the reader is the patient.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from .schemas import ReminderSnapshot, ReminderType


OJ_PRIMARY = "#0FA968"
OJ_TEXT = "#3B4C63"
OJ_TEXT_MUTED = "#7B8DA0"
BRAND_NAME = "อุ่นใจ"
DEFAULT_PATIENT_NAME = "สมาชิก"


@dataclass(frozen=True)
class TypePresentation:
    emoji: str
    label: str
    color: str
    confirm_text: str
    decline_text: str
    confirm_command: str


TYPE_PRESENTATION: Dict[ReminderType, TypePresentation] = {
    ReminderType.MEDICATION: TypePresentation("💊", "กินยา", "#A855F7", "กินยาแล้ว", "ยังไม่ได้กินยา", "กินยาแล้ว"),
    ReminderType.VITALS: TypePresentation("🩺", "วัดความดัน", "#EF4444", "วัดความดันแล้ว", "ยังไม่ได้วัดความดัน", "ความดัน [ค่า]"),
    ReminderType.WATER: TypePresentation("💧", "ดื่มน้ำ", "#3B82F6", "ดื่มน้ำแล้ว", "ยังไม่ได้ดื่มน้ำ", "ดื่มน้ำแล้ว"),
    ReminderType.EXERCISE: TypePresentation("🏃", "ออกกำลังกาย", "#22C55E", "ออกกำลังกายแล้ว", "ยังไม่ได้ออกกำลังกาย", "ออกกำลังกายแล้ว"),
    ReminderType.MEAL: TypePresentation("🍽️", "ทานอาหาร", "#F97316", "ทานอาหารแล้ว", "ยังไม่ได้ทานอาหาร", "กินข้าวแล้ว"),
    ReminderType.GLUCOSE: TypePresentation("🩸", "วัดน้ำตาล", "#F59E0B", "วัดน้ำตาลแล้ว", "ยังไม่ได้วัดน้ำตาล", "น้ำตาล [ค่า]"),
}

_unmapped = set(ReminderType) - set(TYPE_PRESENTATION)
if _unmapped:
    raise RuntimeError(f"Reminder types without a presentation: {sorted(t.value for t in _unmapped)}")


@dataclass(frozen=True)
class ComposedMessage:
    text: str
    alt_text: str
    contents: Optional[Dict[str, Any]] = None


def presentation_for(reminder_type: ReminderType) -> TypePresentation:
    return TYPE_PRESENTATION[reminder_type]


def _display_time(reminder: ReminderSnapshot) -> str:
    return reminder.time_of_day.strftime("%H:%M")


def _postback(action: str, reminder: ReminderSnapshot, medication_name: Optional[str] = None) -> str:
    parts = [
        f"action={action}",
        f"type={reminder.type.value}",
        f"reminder_id={reminder.id}",
        f"patient_id={reminder.patient_id}",
    ]
    if reminder.medication_id:
        parts.append(f"medication_id={reminder.medication_id}")
    if medication_name:
        parts.append(f"medication_name={quote(medication_name)}")
    return "&".join(parts)


def _dot(color: str, size: str = "12px") -> Dict[str, Any]:
    return {
        "type": "box",
        "layout": "vertical",
        "contents": [],
        "width": size,
        "height": size,
        "backgroundColor": color,
        "cornerRadius": "50px",
        "flex": 0,
    }


def _row(label: str, value: str, color: str, margin: str = "lg", bold: bool = False) -> Dict[str, Any]:
    value_text: Dict[str, Any] = {"type": "text", "text": value, "size": "sm", "color": OJ_TEXT, "margin": "md", "wrap": True}
    if bold:
        value_text["weight"] = "bold"
    return {
        "type": "box",
        "layout": "horizontal",
        "contents": [
            _dot(color),
            {"type": "text", "text": label, "size": "xs", "color": OJ_TEXT_MUTED, "flex": 0, "margin": "md"},
            value_text,
        ],
        "alignItems": "center",
        "margin": margin,
    }


def reminder_text(reminder: ReminderSnapshot, include_patient_name: bool, bot_mention: str = "") -> str:
    p = presentation_for(reminder.type)
    lines = [f"{p.emoji} แจ้งเตือน{p.label}", ""]
    if include_patient_name:
        lines.append(f"👤 ผู้ป่วย: {reminder.patient_name or DEFAULT_PATIENT_NAME}")
    lines.append(f"🕐 เวลา: {_display_time(reminder)} น.")
    if reminder.title:
        lines.append(f"📝 {reminder.title}")
    if reminder.description:
        lines.append(f"💬 {reminder.description}")
    command = f"{bot_mention} {p.confirm_command}".strip() if include_patient_name else p.confirm_command
    lines.extend(["", f'✅ พิมพ์ "{command}" เพื่อบันทึก'])
    return "\n".join(lines)


def compose_reminder(reminder: ReminderSnapshot, include_patient_name: bool, bot_mention: str = "") -> ComposedMessage:
    p = presentation_for(reminder.type)
    patient_name = reminder.patient_name or DEFAULT_PATIENT_NAME
    time_display = _display_time(reminder)
    headline = reminder.medication_name or reminder.title or p.label

    if include_patient_name:
        alt_text = f"{p.emoji} แจ้งเตือน{p.label} - {patient_name} เวลา {time_display} น."
    else:
        alt_text = f"{p.emoji} แจ้งเตือน{p.label} เวลา {time_display} น."

    body: List[Dict[str, Any]] = []
    if include_patient_name:
        body.append(_row("สมาชิก", patient_name, p.color, margin="none", bold=True))
    body.append(_row("เวลา", f"{time_display} น.", OJ_TEXT_MUTED, margin="lg" if include_patient_name else "none"))
    if reminder.dosage:
        body.append(_row("ขนาด", reminder.dosage, OJ_TEXT_MUTED))
    if reminder.note:
        body.append(_row("หมายเหตุ", reminder.note, OJ_TEXT_MUTED))

    contents = {
        "type": "bubble",
        "size": "kilo",
        "header": {
            "type": "box",
            "layout": "vertical",
            "contents": [
                {
                    "type": "box",
                    "layout": "horizontal",
                    "contents": [
                        _dot("#FFFFFF", size="10px"),
                        {"type": "text", "text": BRAND_NAME, "size": "xs", "color": "#FFFFFF", "margin": "sm", "weight": "bold", "flex": 0},
                        {"type": "text", "text": f"แจ้งเตือน{p.label}", "size": "xs", "color": "#FFFFFFB3", "margin": "md"},
                    ],
                    "alignItems": "center",
                },
                {"type": "text", "text": headline, "weight": "bold", "size": "xl", "color": "#FFFFFF", "margin": "md", "wrap": True},
            ],
            "backgroundColor": p.color,
            "paddingAll": "xl",
            "paddingBottom": "lg",
        },
        "body": {"type": "box", "layout": "vertical", "contents": body, "paddingAll": "lg"},
        "footer": {
            "type": "box",
            "layout": "vertical",
            "contents": [
                {
                    "type": "button",
                    "action": {
                        "type": "postback",
                        "label": f"{p.label}แล้ว ✓",
                        "data": _postback("reminder_confirm", reminder, medication_name=headline),
                        "displayText": f"{p.confirm_text} ({headline})",
                    },
                    "style": "primary",
                    "color": OJ_PRIMARY,
                    "height": "sm",
                },
                {
                    "type": "button",
                    "action": {
                        "type": "postback",
                        "label": "⏰ ยังไม่ได้ทำ",
                        "data": _postback("reminder_skip", reminder),
                        "displayText": p.decline_text,
                    },
                    "style": "secondary",
                    "height": "sm",
                    "margin": "sm",
                },
            ],
            "paddingAll": "lg",
        },
    }
    return ComposedMessage(
        text=reminder_text(reminder, include_patient_name, bot_mention),
        alt_text=alt_text,
        contents=contents,
    )


def elapsed_hours(last_activity_at: Optional[datetime], now: datetime, threshold: timedelta) -> int:
    """Whole hours since the last activity; the threshold when there was none."""
    if last_activity_at is None:
        return int(threshold.total_seconds() // 3600)
    return int((now - last_activity_at).total_seconds() // 3600)


def compose_missed_activity(
    patient_name: Optional[str],
    last_activity_at: Optional[datetime],
    now: datetime,
    threshold: timedelta = timedelta(hours=4),
) -> ComposedMessage:
    name = patient_name or DEFAULT_PATIENT_NAME
    hours = elapsed_hours(last_activity_at, now, threshold)
    text = (
        "⚠️ แจ้งเตือน\n\n"
        f"ไม่พบกิจกรรมของคุณ{name} มากกว่า {hours} ชั่วโมงแล้ว\n\n"
        "กรุณาตรวจสอบสถานะสมาชิกค่ะ"
    )
    return ComposedMessage(text=text, alt_text=f"⚠️ ไม่พบกิจกรรมของคุณ{name} มากกว่า {hours} ชั่วโมง")


def build_line_messages(message: ComposedMessage, use_flex: bool = True) -> List[Dict[str, Any]]:
    """LINE message objects for one push; plain text when flex is disabled or absent."""
    if use_flex and message.contents is not None:
        return [{"type": "flex", "altText": message.alt_text, "contents": message.contents}]
    return [{"type": "text", "text": message.text}]
