"""Softpaq selection dialog shown before a driver run."""
from __future__ import annotations

import sys
from typing import Iterable, Sequence

from PySide6.QtCore import Qt
from PySide6.QtWidgets import (
    QAbstractItemView,
    QApplication,
    QDialog,
    QDialogButtonBox,
    QHBoxLayout,
    QHeaderView,
    QLabel,
    QPushButton,
    QTableWidget,
    QTableWidgetItem,
    QVBoxLayout,
    QWidget,
)

from services.catalog import PackageRecord

COLUMNS = ("Select", "Id", "Name", "Category", "Version", "Size", "DateReleased")


def _format_size(size: int) -> str:
    if size <= 0:
        return ""
    return f"{size / (1024 * 1024):.1f} MB"


class PackageSelectionDialog(QDialog):
    def __init__(self, packages: Sequence[PackageRecord], parent: QWidget | None = None, *, title: str | None = None) -> None:
        super().__init__(parent)
        self._packages = list(packages)
        self.setWindowTitle(title or "Select HP packages to install")
        self.setMinimumSize(900, 480)
        self._build_ui()
        self._populate_table()

    def _build_ui(self) -> None:
        layout = QVBoxLayout(self)
        button_row = QHBoxLayout()
        self._summary = QLabel(f"{len(self._packages)} package(s) available")
        btn_select_all = QPushButton("Select All")
        btn_select_none = QPushButton("Select None")
        button_row.addWidget(self._summary)
        button_row.addStretch()
        button_row.addWidget(btn_select_all)
        button_row.addWidget(btn_select_none)
        layout.addLayout(button_row)

        self._table = QTableWidget(0, len(COLUMNS), self)
        self._table.setHorizontalHeaderLabels(list(COLUMNS))
        self._table.setEditTriggers(QAbstractItemView.NoEditTriggers)
        self._table.setAlternatingRowColors(True)
        self._table.verticalHeader().setVisible(False)
        header = self._table.horizontalHeader()
        header.setStretchLastSection(True)
        for column in range(len(COLUMNS)):
            header.setSectionResizeMode(column, QHeaderView.ResizeMode.ResizeToContents)
        header.setSectionResizeMode(2, QHeaderView.ResizeMode.Stretch)
        layout.addWidget(self._table)

        buttons = QDialogButtonBox(QDialogButtonBox.Ok | QDialogButtonBox.Cancel)
        buttons.accepted.connect(self.accept)
        buttons.rejected.connect(self.reject)
        layout.addWidget(buttons)

        btn_select_all.clicked.connect(lambda: self.set_all(Qt.Checked))
        btn_select_none.clicked.connect(lambda: self.set_all(Qt.Unchecked))

    def _populate_table(self) -> None:
        self._table.setRowCount(len(self._packages))
        for row, package in enumerate(self._packages):
            checkbox = QTableWidgetItem()
            checkbox.setFlags(Qt.ItemIsSelectable | Qt.ItemIsUserCheckable | Qt.ItemIsEnabled)
            checkbox.setCheckState(Qt.Unchecked)
            checkbox.setData(Qt.UserRole, row)
            self._table.setItem(row, 0, checkbox)
            summary = package.summary()
            self._table.setItem(row, 1, QTableWidgetItem(str(summary["Id"])))
            self._table.setItem(row, 2, QTableWidgetItem(str(summary["Name"])))
            self._table.setItem(row, 3, QTableWidgetItem(str(summary["Category"])))
            version_item = QTableWidgetItem(str(summary["Version"]))
            version_item.setTextAlignment(Qt.AlignCenter)
            self._table.setItem(row, 4, version_item)
            size_item = QTableWidgetItem(_format_size(package.size))
            size_item.setTextAlignment(Qt.AlignRight | Qt.AlignVCenter)
            self._table.setItem(row, 5, size_item)
            self._table.setItem(row, 6, QTableWidgetItem(str(summary["DateReleased"])))

    def set_all(self, state: Qt.CheckState) -> None:
        for row in range(self._table.rowCount()):
            item = self._table.item(row, 0)
            if item:
                item.setCheckState(state)

    def set_checked(self, package_id: str, checked: bool = True) -> None:
        for row, package in enumerate(self._packages):
            if package.id == package_id:
                item = self._table.item(row, 0)
                if item:
                    item.setCheckState(Qt.Checked if checked else Qt.Unchecked)

    def selected_ids(self) -> list[str]:
        selections: list[str] = []
        for row in range(self._table.rowCount()):
            item = self._table.item(row, 0)
            if item and item.checkState() == Qt.Checked:
                idx = item.data(Qt.UserRole)
                if isinstance(idx, int) and 0 <= idx < len(self._packages):
                    selections.append(self._packages[idx].id)
        return selections


class QtPackageSelector:
    """Selector backed by a modal dialog; cancelling selects nothing."""

    def select(self, packages: Sequence[PackageRecord]) -> Iterable[str]:
        app = QApplication.instance() or QApplication(sys.argv[:1])
        dialog = PackageSelectionDialog(packages)
        if not dialog.exec():
            return []
        selected = dialog.selected_ids()
        app.processEvents()
        return selected
