from dataclasses import dataclass, field
from typing import List, Optional

BOARD_COLUMNS = 12          # points per side of the board
TOP_ROW_RATIO = 0.1
BOTTOM_ROW_RATIO = 0.9


@dataclass(frozen=True)
class Point:
    """One of the 24 landing positions on the board."""

    index: int      # 1..24
    x: float
    y: float
    side: str       # "top" or "bottom"

    def to_dict(self):
        return {"point": self.index, "x": self.x, "y": self.y, "side": self.side}


def compute_board_regions(width: float, height: float) -> List[Point]:
    """
    Split a board image of the given size into its 24 points.
    Points 1-12 sit along the top edge, 13-24 along the bottom edge,
    both rows at the centers of 12 equal-width columns.
    """
    column_width = width / BOARD_COLUMNS
    regions = []
    for row, (side, ratio) in enumerate((("top", TOP_ROW_RATIO), ("bottom", BOTTOM_ROW_RATIO))):
        for i in range(BOARD_COLUMNS):
            regions.append(Point(
                index=row * BOARD_COLUMNS + i + 1,
                x=column_width * i + column_width / 2,
                y=height * ratio,
                side=side,
            ))
    return regions


@dataclass
class Detection:
    x: Optional[float] = None
    y: Optional[float] = None
    radius: Optional[float] = None
    kind: str = "checker"
    pips: Optional[int] = None     # dice only; None when the face could not be read

    @classmethod
    def from_dict(cls, data: dict, kind: str) -> "Detection":
        return cls(
            x=data.get("x"),
            y=data.get("y"),
            radius=data.get("radius"),
            kind=kind,
            pips=data.get("pips"),
        )

    def to_dict(self):
        data = {"x": self.x, "y": self.y, "radius": self.radius, "type": self.kind}
        if self.kind == "dice":
            data["pips"] = self.pips
        return data


@dataclass
class DiceState:
    red: Optional[Detection] = None
    white: Optional[Detection] = None

    def present(self):
        """Yield (color label, die) for each die that was found."""
        for color, die in (("Red", self.red), ("White", self.white)):
            if die is not None:
                yield color, die

    def to_dict(self):
        return {
            "red": self.red.to_dict() if self.red else None,
            "white": self.white.to_dict() if self.white else None,
        }


@dataclass
class CubeState:
    x: Optional[float] = None
    y: Optional[float] = None
    value: Optional[int] = None    # None until the face value can be read
    area: Optional[float] = None

    @property
    def is_located(self) -> bool:
        return self.x is not None and self.y is not None

    def to_dict(self):
        return {"x": self.x, "y": self.y, "value": self.value, "area": self.area}


@dataclass
class GameStateSnapshot:
    """Everything seen on the board in a single detection cycle."""

    checkers: List[Detection] = field(default_factory=list)
    dice: Optional[DiceState] = None
    cube: Optional[CubeState] = None
    board_regions: List[Point] = field(default_factory=list)
    timestamp: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "GameStateSnapshot":
        """
        Build a snapshot from the JSON shape the browser client submits:
        {"checkers": [...], "dice": {"red": ..., "white": ...}, "cube": {...}}.
        A missing or null "dice"/"cube" key means the section is absent.
        """
        checkers = [Detection.from_dict(c, "checker") for c in data.get("checkers") or []]

        dice = None
        dice_data = data.get("dice")
        if dice_data is not None:
            dice = DiceState(
                red=Detection.from_dict(dice_data["red"], "dice") if dice_data.get("red") else None,
                white=Detection.from_dict(dice_data["white"], "dice") if dice_data.get("white") else None,
            )

        cube = None
        cube_data = data.get("cube")
        if cube_data is not None:
            cube = CubeState(
                x=cube_data.get("x"),
                y=cube_data.get("y"),
                value=cube_data.get("value"),
                area=cube_data.get("area"),
            )

        return cls(checkers=checkers, dice=dice, cube=cube, timestamp=data.get("timestamp"))

    @property
    def detection_count(self) -> int:
        count = len(self.checkers)
        if self.dice is not None:
            count += sum(1 for _ in self.dice.present())
        if self.cube is not None and self.cube.is_located:
            count += 1
        return count

    def to_dict(self):
        return {
            "checkers": [c.to_dict() for c in self.checkers],
            "dice": self.dice.to_dict() if self.dice else None,
            "cube": self.cube.to_dict() if self.cube else None,
            "boardRegions": [p.to_dict() for p in self.board_regions],
            "timestamp": self.timestamp,
        }
