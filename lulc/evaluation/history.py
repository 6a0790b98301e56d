"""SQLite history of evaluation runs, for comparing models across runs."""

from __future__ import annotations

import math
import sqlite3
from pathlib import Path
from typing import Optional

import pandas as pd
from loguru import logger

from config.settings import HISTORY_DB
from lulc.evaluation.confusion import ConfusionMatrix


def _nullable(value: float) -> Optional[float]:
    return None if math.isnan(value) else float(value)


def init_database(db_path: Path = HISTORY_DB) -> None:
    """Initialize the SQLite database for evaluation history.

    Creates the tables if they don't exist.
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(db_path))
    cursor = conn.cursor()

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS evaluation_runs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            run_name TEXT NOT NULL,
            model TEXT NOT NULL,
            dataset TEXT NOT NULL,
            seed INTEGER,
            n_train INTEGER,
            n_test INTEGER,
            overall_accuracy REAL,
            kappa REAL,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(run_name, model, dataset)
        )
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS class_accuracy (
            run_id INTEGER NOT NULL,
            class_code INTEGER NOT NULL,
            producers REAL,
            consumers REAL,
            PRIMARY KEY (run_id, class_code),
            FOREIGN KEY (run_id) REFERENCES evaluation_runs(id)
        )
    """)

    conn.commit()
    conn.close()
    logger.debug("Database initialized at {}", db_path)


def store_evaluation(
    run_name: str,
    model: str,
    cm: ConfusionMatrix,
    dataset: str = "test",
    seed: Optional[int] = None,
    n_train: Optional[int] = None,
    db_path: Path = HISTORY_DB,
) -> int:
    """Store the headline and per-class metrics of one evaluation.

    Re-storing the same (run_name, model, dataset) replaces the earlier row.

    Returns
    -------
    int
        Row id of the stored run.
    """
    init_database(db_path)

    conn = sqlite3.connect(str(db_path))
    cursor = conn.cursor()

    cursor.execute(
        "SELECT id FROM evaluation_runs WHERE run_name = ? AND model = ? AND dataset = ?",
        (run_name, model, dataset),
    )
    existing = cursor.fetchone()
    if existing:
        cursor.execute("DELETE FROM class_accuracy WHERE run_id = ?", (existing[0],))
        cursor.execute("DELETE FROM evaluation_runs WHERE id = ?", (existing[0],))

    cursor.execute(
        """
        INSERT INTO evaluation_runs
        (run_name, model, dataset, seed, n_train, n_test, overall_accuracy, kappa)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            run_name,
            model,
            dataset,
            seed,
            n_train,
            cm.total,
            _nullable(cm.accuracy()),
            _nullable(cm.kappa()),
        ),
    )
    run_id = cursor.lastrowid

    producers = cm.producers_accuracy()
    consumers = cm.consumers_accuracy()
    cursor.executemany(
        """
        INSERT INTO class_accuracy (run_id, class_code, producers, consumers)
        VALUES (?, ?, ?, ?)
        """,
        [
            (run_id, code, _nullable(producers[code]), _nullable(consumers[code]))
            for code in cm.labels
        ],
    )

    conn.commit()
    conn.close()
    logger.debug("Stored {} evaluation of {} for run {}", dataset, model, run_name)
    return run_id


def load_history(
    model: Optional[str] = None,
    dataset: Optional[str] = None,
    db_path: Path = HISTORY_DB,
) -> pd.DataFrame:
    """Load stored evaluation runs, oldest first."""
    conn = sqlite3.connect(str(db_path))

    query = "SELECT * FROM evaluation_runs WHERE 1=1"
    params = []

    if model:
        query += " AND model = ?"
        params.append(model)
    if dataset:
        query += " AND dataset = ?"
        params.append(dataset)

    query += " ORDER BY id"

    df = pd.read_sql_query(query, conn, params=params)
    conn.close()

    if not df.empty:
        df["created_at"] = pd.to_datetime(df["created_at"])

    return df


def load_class_accuracy(run_id: int, db_path: Path = HISTORY_DB) -> pd.DataFrame:
    """Per-class producer's/consumer's accuracy of one stored run."""
    conn = sqlite3.connect(str(db_path))
    df = pd.read_sql_query(
        "SELECT class_code, producers, consumers FROM class_accuracy "
        "WHERE run_id = ? ORDER BY class_code",
        conn,
        params=[run_id],
    )
    conn.close()
    return df
