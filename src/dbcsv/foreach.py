"""Calling a stored procedure or function with the cells of every row."""

from __future__ import annotations

import csv
import logging
import re
import sys
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, TextIO

from dbcsv.concurrency import Context
from dbcsv.database import DatabaseConnection, Dialect
from dbcsv.errors import ConversionError, DbcsvError, ExecutionError
from dbcsv.readers import Row
from dbcsv.source import Source, SourceOptions

logger = logging.getLogger(__name__)

DEFAULT_FUNCTION = "DBMS_OUTPUT.PUT_LINE"
DEFAULT_FIX = "p_file_name=>{file_name}"

_BIND_RE = re.compile(r":([A-Za-z0-9][A-Za-z0-9_]*)")
_DIGITS_RE = re.compile(r"[0-9]+")


def str_to_date(value: str) -> datetime | None:
    """Lenient date parser for numeric dates.

    The digit groups are zero padded (year to 4, the rest to 2) and joined;
    ``mm/dd/yyyy`` is reordered first. Fourteen digits are read as
    ``YYYYMMDDHHMMSS``, anything between 8 and 14 as ``YYYYMMDD``.

    Examples:
        >>> str_to_date("2020-1-2")
        datetime.datetime(2020, 1, 2, 0, 0)
        >>> str_to_date("12/31/2019")
        datetime.datetime(2019, 12, 31, 0, 0)
        >>> str_to_date("20200102030405")
        datetime.datetime(2020, 1, 2, 3, 4, 5)
        >>> str_to_date("") is None
        True

    Raises:
        ValueError: If the value is too short or not a valid date
    """
    fields = _DIGITS_RE.findall(value)
    if not fields:
        return None
    if len(fields) >= 3 and len(fields[0]) < 4 and len(fields[2]) == 4:
        fields[0], fields[1], fields[2] = fields[2], fields[0], fields[1]
    digits = "".join(f.zfill(4 if i == 0 else 2) for i, f in enumerate(fields))[:14]
    if len(digits) == 14:
        return datetime.strptime(digits, "%Y%m%d%H%M%S")
    if len(digits) < 8:
        raise ValueError(f"date {digits!r} too short")
    return datetime.strptime(digits[:8], "%Y%m%d")


@dataclass(frozen=True)
class Slot:
    """One bind position of the call besides the function result.

    ``kind`` is ``in`` (filled from the next row value, through
    ``converter`` when set), ``out`` (an output variable of native type
    ``native``) or ``fixed`` (the constant ``value``).
    """

    kind: str
    name: str = ""
    converter: Callable[[str], Any] | None = None
    native: str = ""
    value: str = ""


@dataclass
class Statement:
    """A prepared call: the PL/SQL block and how to fill its binds."""

    qry: str
    slots: list[Slot] = field(default_factory=list)
    returns: bool = False

    @property
    def n_inputs(self) -> int:
        return sum(1 for s in self.slots if s.kind == "in")

    @classmethod
    def from_literal(cls, block: str) -> Statement:
        """Use a literal ``BEGIN ... END;`` block; every bind is filled from the row.

        A ``:=`` before the first ``(`` makes the first bind the function result.

        Examples:
            >>> st = Statement.from_literal("BEGIN :ret := pkg.fn(:a, :b); END;")
            >>> st.returns, st.n_inputs
            (True, 2)
        """
        names = _BIND_RE.findall(block)
        paren = block.find("(")
        returns = paren >= 0 and ":=" in block[5:paren]
        n = len(names) - 1 if returns else len(names)
        return cls(block, [Slot("in", name) for name in names[len(names) - n :]], returns)

    @classmethod
    def from_arguments(
        cls,
        function: str,
        arguments: Iterable[tuple[str | None, str, str]],
        fixed: list[tuple[str, str]] | None = None,
    ) -> Statement:
        """Build the call of ``function`` from its ``(name, data_type, in_out)`` arguments.

        An unnamed first argument is the function's result. Arguments named in
        ``fixed`` are bound to the fixed values, appended after the others.
        """
        fixed = fixed or []
        args = list(arguments)
        if not args:
            raise DbcsvError(f"{function} has no arguments")
        qry = "BEGIN "
        returns = False
        i = 1
        if args[0][0] is None:
            qry += ":x1 := "
            args = args[1:]
            returns = True
            i += 1
        fixed_names = {name.upper() for name, _ in fixed}
        vals, slots = [], []
        for name, data_type, in_out in args:
            if name is None or name.upper() in fixed_names:
                continue
            vals.append(f"{name.lower()}=>:x{i}")
            if in_out == "OUT":
                slots.append(Slot("out", name, native=data_type))
            elif data_type == "DATE":
                slots.append(Slot("in", name, converter=str_to_date))
            else:
                slots.append(Slot("in", name))
            i += 1
        for name, value in fixed:
            vals.append(f"{name}=>:x{i}")
            slots.append(Slot("fixed", name, value=value))
            i += 1
        return cls(f"{qry}{function}({', '.join(vals)}); END;", slots, returns)


def parse_fix(text: str, file_name: str) -> list[tuple[str, str]]:
    """Parse ``name=>template,...``; templates may refer to ``{file_name}``.

    Examples:
        >>> parse_fix("p_file_name=>{file_name},p_x=>1", "a.csv")
        [('p_file_name', 'a.csv'), ('p_x', '1')]
    """
    out = []
    if not text.strip():
        return out
    for item in text.split(","):
        name, sep, template = item.partition("=>")
        if not sep:
            raise DbcsvError(f"{item!r}: fixed parameter needs name=>value")
        out.append((name.strip(), template.format(file_name=file_name)))
    return out


def argument_query(function: str) -> tuple[str, list[str]]:
    """Catalog query of the arguments of ``[[owner.]package.]name``."""
    parts = function.split(".")
    qry = "SELECT argument_name, data_type, in_out FROM all_arguments WHERE "
    if len(parts) == 1:
        qry += "owner = SYS_CONTEXT('USERENV', 'CURRENT_SCHEMA') AND package_name IS NULL AND object_name = UPPER(:1)"
    elif len(parts) == 2:
        qry += "owner = SYS_CONTEXT('USERENV', 'CURRENT_SCHEMA') AND package_name = UPPER(:1) AND object_name = UPPER(:2)"
    elif len(parts) == 3:
        qry += "owner = UPPER(:1) AND package_name = UPPER(:2) AND object_name = UPPER(:3)"
    else:
        raise DbcsvError(f"bad function name: {function}")
    return qry + " ORDER BY sequence", parts


def get_statement(db: DatabaseConnection, function: str, fixed: list[tuple[str, str]]) -> Statement:
    """Statement of a literal block, or of ``function`` looked up in the catalog."""
    function = function.strip()
    if function.startswith("BEGIN ") and function.endswith("END;"):
        return Statement.from_literal(function)
    if db.dialect.name != "oracle":
        raise DbcsvError(f"{db.dialect.name}: procedure lookup needs an Oracle database")
    qry, params = argument_query(function)
    cur = db.execute(qry, params)
    args = [(name, data_type, in_out) for name, data_type, in_out in cur]
    cur.close()
    return Statement.from_arguments(function, args, fixed)


def _out_string(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (datetime, date)):
        return value.strftime("%Y-%m-%d")
    if isinstance(value, float):
        return f"{value:f}"
    return str(value)


def bind_values(
    dialect: Dialect, cur: Any, st: Statement, row: Row
) -> tuple[list[Any], Any, list[tuple[Slot, Any]]]:
    """Positional binds of one row.

    Returns:
        The bind list, the function result variable (or None) and the
        ``(slot, bound)`` pairs of the non-row binds

    Raises:
        ConversionError: If a value cannot be converted
    """
    values = row.values
    n_inputs = st.n_inputs
    if len(values) > n_inputs:
        logger.warning("converter number mismatch values=%d inputs=%d", len(values), n_inputs)
    params: list[Any] = []
    ret = None
    if st.returns:
        ret = dialect.out_var(cur, "NUMBER")
        params.append(ret)
    extra: list[tuple[Slot, Any]] = []
    j = 0
    for slot in st.slots:
        if slot.kind == "in":
            s = values[j] if j < len(values) else ""
            j += 1
            if slot.converter is None:
                params.append(s)
                continue
            try:
                params.append(slot.converter(s))
            except ValueError as e:
                raise ConversionError(row.line, slot.name, s, str(e)) from e
        elif slot.kind == "out":
            var = dialect.out_var(cur, slot.native)
            params.append(var)
            extra.append((slot, var))
        else:
            params.append(slot.value)
            extra.append((slot, slot.value))
    return params, ret, extra


def _getvalue(bound: Any) -> Any:
    return bound.getvalue() if hasattr(bound, "getvalue") else bound


@dataclass
class ForeachOptions:
    function: str = DEFAULT_FUNCTION
    fix: str = DEFAULT_FIX
    ret_ok: int = 0
    one_tx: bool = True
    source: SourceOptions = field(default_factory=lambda: SourceOptions(skip=1))


def foreach(
    ctx: Context,
    url: str,
    file_name: str,
    options: ForeachOptions | None = None,
    dialect: Dialect | None = None,
    out: TextIO | None = None,
    err: TextIO | None = None,
) -> int:
    """Call the function once per non-empty row of ``file_name``.

    With a function result, rows whose result differs from ``ret_ok`` are
    rolled back and reported on ``err`` plus as a CSV line on ``out``; with
    ``one_tx`` the first such row aborts everything.

    Returns:
        Number of calls executed

    Raises:
        DbcsvError: On conversion or execution failure, or on a result mismatch in one transaction mode
    """
    options = options or ForeachOptions()
    out = out or sys.stdout
    err = err or sys.stderr
    fixed = parse_fix(options.fix, file_name)
    start = time.monotonic()
    n = 0
    with Source.open(file_name, options.source) as src, DatabaseConnection(url, dialect) as db:
        st = get_statement(db, options.function, fixed)
        logger.debug("statement qry=%r slots=%d returns=%s", st.qry, len(st.slots), st.returns)
        in_tx = False
        for _, row in src.iter_rows(ctx):
            if not any(row.values):
                continue
            if not in_tx:
                db.begin()
                in_tx = True
            cur = db.cursor()
            params, ret_var, extra = bind_values(db.dialect, cur, st, row)
            logger.info("exec line=%d values=%s", row.line, row.values)
            try:
                cur.execute(st.qry, params)
            except db.dialect.driver_errors as e:
                raise ExecutionError(st.qry, e, params, row.line) from e
            n += 1
            if st.returns:
                ret = int(_getvalue(ret_var) or 0)
                outs = ", ".join(_out_string(_getvalue(b)) for _, b in extra)
                cells = "[" + " ".join(row.values) + "]"
                if ret == options.ret_ok:
                    out.write(f"{ret}: OK [{outs}]\t{cells}\n")
                else:
                    err.write(f"{ret}: {outs}\t{cells}\n")
                    logger.warning("rollback ret=%d line=%d", ret, row.line)
                    db.rollback()
                    in_tx = False
                    csv.writer(out, lineterminator="\n").writerow([str(ret), outs, *row.values])
                    if options.one_tx:
                        raise DbcsvError(f"returned {ret} ({outs}) for line {row.line} ({row.values!r})")
            if in_tx and not options.one_tx:
                db.commit()
                in_tx = False
        if in_tx:
            db.commit()
    logger.info("processed rows=%d dur=%.3fs", n, time.monotonic() - start)
    return n
