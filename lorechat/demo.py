"""Create demo content for development/testing."""

import shutil

from lorechat import storage

DEMO_PROJECT_ID = "harbor-city"
DEMO_SCENE_ID = "night-market"
DEMO_CHARACTER_SLUG = "seoyeon"
DEMO_CHALLENGE_ID = "seoyeon-date"

DEMO_PROJECT = {
    "lorebook": [
        {"key": "도시", "value": "안개가 자주 끼는 항구 도시. 밤에는 야시장이 열린다.", "sortOrder": 0},
        {"key": "항만 조합", "value": "부두 일을 쥐고 있는 조합. 외부인을 경계한다.", "sortOrder": 1},
    ],
    "rules": {
        "varLabels": {"trust": "신뢰도", "risk": "위험도"},
        "rules": [
            {
                "id": "project-long-absence",
                "name": "오랜만의 방문",
                "if": {"type": "AND", "conditions": [{"type": "inactive_time", "hours": 24}]},
                "then": {"actions": [
                    {"type": "system_message", "text": "오랜만에 {{call_sign}}님이 돌아왔다."},
                ]},
            },
        ],
    },
}

DEMO_SCENE = {
    "lorebook": [
        {"key": "야시장", "value": "부두 옆 골목에 늘어선 포장마차들.", "sortOrder": 0},
        {"key": "도시", "value": "오늘 밤은 안개가 유난히 짙다.", "mergeMode": "append", "sortOrder": 1},
    ],
    "rules": {
        "rules": [
            {
                "id": "scene-guard-joins",
                "name": "경비원 등장",
                "if": {"type": "OR", "conditions": [
                    {"type": "text_includes", "values": ["경찰", "신고"]},
                    {"type": "variable_compare", "var": "risk", "op": ">=", "value": 80},
                ]},
                "then": {"actions": [
                    {"type": "join", "name": "경비원 민호"},
                    {"type": "variable_mod", "var": "risk", "op": "-", "value": 10},
                ]},
            },
        ],
    },
}

DEMO_CHARACTER = {
    "name": "서연",
    "handle": "seoyeon_night",
    "hashtags": ["야시장", "츤데레"],
    "mbti": "ISTP",
    "projectId": DEMO_PROJECT_ID,
    "safetySupported": False,
    "prompt": {
        "system": {
            "personalitySummary": "야시장에서 떡볶이 포장마차를 하는 20대 후반. 겉으로는 퉁명스럽지만 단골을 챙긴다.",
            "speechGuide": "반말, 짧은 문장. 기분이 좋으면 말끝을 흐린다.",
            "coreDesire": "언젠가 자기 가게를 갖는 것.",
            "fewShotPairs": [
                {"user": "오늘 장사 어때?", "bot": "(국자를 저으며) 보면 몰라? 파리 날려."},
                {"user": "떡볶이 하나 주세요", "bot": "맵게? 아니면 애들 입맛?"},
            ],
        },
        "author": {
            "forceBracketNarration": True,
            "shortLongLimit": True,
            "authorNote": "현재 신뢰도는 {{trust}}. 신뢰도가 낮으면 쉽게 마음을 열지 않는다.",
        },
    },
    "lorebook": [
        {"key": "포장마차", "value": "3년째 같은 자리. 비 오는 날은 쉰다.", "sortOrder": 0},
        {
            "key": "빚",
            "value": "항만 조합에 갚아야 할 돈이 있다.",
            "sortOrder": 1,
            "unlock": {"type": "condition", "expr": "trust>=30"},
        },
        {
            "key": "과거",
            "value": "원래는 요리 학교를 다니다 그만뒀다.",
            "sortOrder": 2,
            "unlock": {"type": "affection", "min": 50},
        },
    ],
    "rules": {
        "varLabels": {"affection": "호감도"},
        "rules": [
            {
                "id": "promise",
                "name": "약속",
                "if": {"type": "AND", "conditions": [{"type": "text_includes", "values": ["약속"]}]},
                "then": {"actions": [
                    {"type": "variable_mod", "var": "trust", "op": "+", "value": 5},
                ]},
            },
            {
                "id": "compliment",
                "name": "칭찬",
                "if": {"type": "OR", "conditions": [{"type": "text_includes", "values": ["맛있", "최고"]}]},
                "then": {"actions": [
                    {"type": "variable_mod", "var": "affection", "op": "+", "value": 3},
                    {"type": "system_message", "text": "서연의 귀가 살짝 빨개졌다."},
                ]},
            },
        ],
    },
}

DEMO_CHALLENGE = {
    "id": DEMO_CHALLENGE_ID,
    "characterSlug": DEMO_CHARACTER_SLUG,
    "title": "야시장 데이트",
    "goal": "서연에게 장사가 끝난 뒤 함께 산책하자는 약속을 받아낸다.",
    "situation": "마감 30분 전, 손님이 거의 없다.",
    "successKeywords": ["좋아", "같이 가"],
    "partialMatch": True,
    "minTurnsForSuccess": 3,
}


def create_demo_data() -> None:
    """Wipe existing content and create one demo project, scene, character and challenge."""
    for d in (storage.characters_dir(), storage.projects_dir(), storage.challenges_dir()):
        if d.exists():
            shutil.rmtree(d)
        d.mkdir(parents=True, exist_ok=True)

    storage.save_project(DEMO_PROJECT_ID, DEMO_PROJECT)
    storage.save_scene(DEMO_PROJECT_ID, DEMO_SCENE_ID, DEMO_SCENE)
    storage.save_character(DEMO_CHARACTER_SLUG, DEMO_CHARACTER)
    storage.save_challenge(DEMO_CHALLENGE)
    storage.save_identity({
        "id": "demo-user",
        "nickname": "지훈",
        "adultVerified": False,
        "ownedSkus": [],
        "unlockedEndingKeys": [],
        "epCleared": [],
    })
