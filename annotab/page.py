from __future__ import annotations

import json
from html import escape
from typing import Any

from .annotations import SNAPSHOT_TTL_MS
from .ingest import IngestResult
from .layout import Z_INDEX, initial_column_widths, layout_constants

STORAGE_PREFIX = "annotab:comments:"

_STYLE = """
    :root {
      color-scheme: dark;
      --bg: #0f172a;
      --bg-gradient: radial-gradient(circle at 20% 20%, #1e293b 0%, #0b1224 35%, #0b1224 60%, #0f172a 100%);
      --panel-alpha: rgba(15, 23, 42, 0.9);
      --panel-solid: #0b1224;
      --card-bg: rgba(11, 18, 36, 0.95);
      --input-bg: rgba(15, 23, 42, 0.6);
      --border: #1f2937;
      --accent: #60a5fa;
      --text: #e5e7eb;
      --text-inverse: #0b1224;
      --muted: #94a3b8;
      --badge: #22c55e;
      --table-bg: rgba(15, 23, 42, 0.7);
      --row-even: rgba(30, 41, 59, 0.4);
      --row-odd: rgba(15, 23, 42, 0.2);
      --selected-bg: rgba(96, 165, 250, 0.15);
      --hover-bg: rgba(96, 165, 250, 0.08);
      --shadow-color: rgba(0, 0, 0, 0.35);
      --code-bg: #1e293b;
    }
    [data-theme="light"] {
      color-scheme: light;
      --bg: #f8fafc;
      --bg-gradient: linear-gradient(135deg, #f8fafc 0%, #e2e8f0 100%);
      --panel-alpha: rgba(255, 255, 255, 0.95);
      --panel-solid: #ffffff;
      --card-bg: rgba(255, 255, 255, 0.98);
      --input-bg: #f1f5f9;
      --border: #e2e8f0;
      --accent: #3b82f6;
      --text: #1e293b;
      --text-inverse: #ffffff;
      --muted: #64748b;
      --badge: #22c55e;
      --table-bg: #ffffff;
      --row-even: #f8fafc;
      --row-odd: #ffffff;
      --selected-bg: rgba(59, 130, 246, 0.12);
      --hover-bg: rgba(59, 130, 246, 0.06);
      --shadow-color: rgba(0, 0, 0, 0.1);
      --code-bg: #f1f5f9;
    }
    * { box-sizing: border-box; }
    body {
      margin: 0;
      font-family: "Inter", "Hiragino Sans", system-ui, -apple-system, sans-serif;
      background: var(--bg-gradient);
      color: var(--text);
      min-height: 100vh;
    }
    .topbar {
      position: sticky;
      top: 0;
      z-index: 20;
      padding: 12px 16px;
      background: var(--panel-alpha);
      backdrop-filter: blur(8px);
      border-bottom: 1px solid var(--border);
      display: flex;
      gap: 12px;
      align-items: center;
      justify-content: space-between;
    }
    .topbar .meta { display: flex; gap: 12px; align-items: center; flex-wrap: wrap; }
    .topbar h1 { font-size: 16px; margin: 0; font-weight: 700; }
    .topbar .actions { display: flex; gap: 8px; align-items: center; }
    .badge, .pill {
      background: var(--selected-bg);
      border: 1px solid var(--border);
      border-radius: 999px;
      padding: 4px 10px;
      font-size: 12px;
    }
    button {
      background: var(--selected-bg);
      color: var(--text);
      border: 1px solid var(--border);
      border-radius: 8px;
      padding: 8px 10px;
      font-size: 13px;
      cursor: pointer;
    }
    button:hover { background: var(--hover-bg); }
    button.primary, #send-and-exit {
      background: var(--accent);
      color: var(--text-inverse);
      border-color: var(--accent);
      font-weight: 700;
    }
    .wrap { padding: 12px 16px 40px; }
    .toolbar { display: flex; gap: 12px; align-items: center; margin: 4px 0 12px; color: var(--muted); font-size: 13px; }
    .table-box {
      background: var(--table-bg);
      border: 1px solid var(--border);
      border-radius: 12px;
      overflow: auto;
      max-height: calc(100vh - 110px);
      box-shadow: 0 20px 50px var(--shadow-color);
    }
    table { border-collapse: separate; border-spacing: 0; table-layout: fixed; width: max-content; min-width: 100%; }
    thead th {
      position: sticky;
      top: 0;
      background: var(--panel-solid);
      color: var(--muted);
      font-size: 12px;
      padding: 0;
      border-bottom: 1px solid var(--border);
      border-right: 1px solid var(--border);
      white-space: nowrap;
    }
    thead th .th-inner { position: relative; display: flex; justify-content: center; padding: 8px 6px; cursor: pointer; }
    thead th.filtered .th-inner { color: var(--accent); font-weight: 700; }
    thead th.filtered .th-inner::after { content: " \\25BC"; font-size: 10px; }
    .resizer { position: absolute; right: 0; top: 0; width: 6px; height: 100%; cursor: col-resize; touch-action: none; }
    .resizer:hover { background: var(--accent); opacity: 0.5; }
    tbody th {
      position: sticky;
      left: 0;
      background: var(--panel-solid);
      color: var(--muted);
      text-align: right;
      padding: 8px 6px;
      font-size: 12px;
      font-weight: 400;
      border-right: 1px solid var(--border);
      border-bottom: 1px solid var(--border);
      cursor: pointer;
    }
    .freeze, .freeze-row { position: sticky !important; background: var(--panel-solid); }
    td {
      position: relative;
      padding: 8px 10px;
      border-bottom: 1px solid var(--border);
      border-right: 1px solid var(--border);
      background: var(--row-odd);
      font-size: 13px;
      white-space: pre-wrap;
      word-break: break-word;
      vertical-align: top;
      cursor: cell;
    }
    tr:nth-child(even) td:not(.selected):not(.has-comment) { background: var(--row-even); }
    td:hover:not(.selected) { background: var(--hover-bg); }
    td.has-comment { background: rgba(34, 197, 94, 0.12); box-shadow: inset 0 0 0 1px rgba(34, 197, 94, 0.35); }
    td.selected, th.selected { background: rgba(99, 102, 241, 0.22) !important; }
    td .dot { position: absolute; right: 6px; top: 6px; width: 8px; height: 8px; border-radius: 99px; background: var(--badge); }
    tr.kind-add td { background: rgba(34, 197, 94, 0.10); }
    tr.kind-delete td { background: rgba(239, 68, 68, 0.10); }
    tr.kind-file td, tr.kind-hunk td { color: var(--accent); font-weight: 600; }
    body.dragging { user-select: none; cursor: crosshair; }
    .floating {
      position: absolute;
      z-index: 30;
      display: none;
      width: 380px;
      padding: 12px;
      background: var(--card-bg);
      border: 1px solid var(--border);
      border-radius: 12px;
      box-shadow: 0 20px 40px var(--shadow-color);
    }
    .floating .card-head { display: flex; justify-content: space-between; align-items: center; margin-bottom: 8px; }
    .floating h2 { font-size: 14px; margin: 0; }
    textarea {
      width: 100%;
      min-height: 90px;
      background: var(--input-bg);
      color: var(--text);
      border: 1px solid var(--border);
      border-radius: 8px;
      padding: 8px;
      font: inherit;
    }
    .card-actions, .modal-actions { display: flex; justify-content: flex-end; gap: 8px; margin-top: 8px; }
    .comment-list {
      position: fixed;
      right: 16px;
      bottom: 64px;
      z-index: 25;
      width: 320px;
      max-height: 50vh;
      overflow: auto;
      padding: 12px;
      background: var(--card-bg);
      border: 1px solid var(--border);
      border-radius: 12px;
      box-shadow: 0 18px 40px var(--shadow-color);
    }
    .comment-list.collapsed { display: none; }
    .comment-list h3 { margin: 0 0 8px; font-size: 13px; color: var(--muted); }
    .comment-list ol { margin: 0; padding-left: 18px; font-size: 13px; }
    .comment-list li { margin-bottom: 6px; cursor: pointer; }
    .comment-list .hint { color: var(--muted); font-size: 12px; cursor: default; }
    .comment-toggle { position: fixed; right: 16px; bottom: 16px; z-index: 25; }
    .filter-menu {
      position: absolute;
      z-index: 30;
      display: none;
      min-width: 200px;
      padding: 8px;
      background: var(--panel-solid);
      border: 1px solid var(--border);
      border-radius: 10px;
      box-shadow: 0 14px 30px var(--shadow-color);
    }
    .filter-menu button { display: block; width: 100%; text-align: left; margin-top: 4px; }
    .filter-menu .menu-check { display: flex; gap: 6px; align-items: center; font-size: 13px; }
    .modal-overlay {
      position: fixed;
      inset: 0;
      z-index: 40;
      display: none;
      align-items: center;
      justify-content: center;
      background: rgba(0, 0, 0, 0.5);
    }
    .modal-overlay.visible { display: flex; }
    .modal-dialog {
      width: min(480px, 90vw);
      padding: 20px;
      background: var(--panel-solid);
      border: 1px solid var(--border);
      border-radius: 12px;
      box-shadow: 0 20px 40px var(--shadow-color);
    }
    .modal-dialog h3 { margin: 0 0 12px; color: var(--accent); }
    .modal-summary { color: var(--muted); font-size: 13px; }
    .md-layout { display: grid; grid-template-columns: 1fr 1fr; gap: 12px; }
    .md-left, .md-right { max-height: calc(100vh - 90px); overflow: auto; }
    .md-right .table-box { max-height: none; overflow: visible; }
    .md-preview {
      padding: 16px;
      background: var(--table-bg);
      border: 1px solid var(--border);
      border-radius: 12px;
      line-height: 1.5;
    }
    .md-preview img { max-width: 100%; height: auto; }
    .md-preview code, .md-preview pre { background: var(--code-bg); border-radius: 4px; }
    .md-preview pre { padding: 8px; overflow: auto; }
"""

_SCRIPT = r"""
    (function () {
      "use strict";

      function readJson(id, fallback) {
        const node = document.getElementById(id);
        try {
          const value = JSON.parse(node ? node.textContent : "");
          return value && typeof value == "object" ? value : fallback;
        } catch (_error) {
          return fallback;
        }
      }

      const gridDoc = readJson("annotab-grid-json", { rows: [] });
      const config = readJson("annotab-config-json", {});
      const DATA = Array.isArray(gridDoc.rows) ? gridDoc.rows : [];
      const MODE = String(config.mode || "text");
      const FILE_NAME = String(config.file || "");
      const MAX_COLS = Math.max(1, Number(config.columnCount || 1));
      const LAYOUT = config.layout || {};
      const Z = config.zIndex || {};
      const ROW_HEADER_WIDTH = Number(LAYOUT.rowHeaderWidth || 28);
      const MIN_COL_WIDTH = Number(LAYOUT.minColWidth || 80);
      const MAX_COL_WIDTH = Number(LAYOUT.maxColWidth || 420);
      const DEFAULT_COL_WIDTH = Number(LAYOUT.defaultColWidth || 120);
      const STORAGE_KEY = String(config.storageKey || "annotab:comments:" + FILE_NAME);
      const STORAGE_TTL = Number(config.storageTtlMs || 0);

      const tbody = document.getElementById("tbody");
      const colgroup = document.getElementById("colgroup");
      const thead = document.querySelector("#grid-table thead");
      const card = document.getElementById("comment-card");
      const cardTitle = document.getElementById("card-title");
      const cellPreview = document.getElementById("cell-preview");
      const commentInput = document.getElementById("comment-input");
      const commentList = document.getElementById("comment-list");
      const commentCount = document.getElementById("comment-count");
      const commentPanel = document.getElementById("comment-panel");
      const commentToggle = document.getElementById("comment-toggle");
      const filterMenu = document.getElementById("filter-menu");
      const rowMenu = document.getElementById("row-menu");
      const freezeColCheck = document.getElementById("freeze-col-check");
      const freezeRowCheck = document.getElementById("freeze-row-check");
      const fitBtn = document.getElementById("fit-width");

      function clamp(v, min, max) { return Math.min(max, Math.max(min, v)); }

      function cellAt(row, col) {
        const values = DATA[row - 1];
        if (!Array.isArray(values) || col < 1 || col > values.length) return "";
        const value = values[col - 1];
        return value == null ? "" : String(value);
      }

      function cellNode(row, col) {
        return tbody.querySelector('td[data-row="' + row + '"][data-col="' + col + '"]');
      }

      function escapeHtml(str) {
        return String(str).replace(/[&<>"]/g, (s) => ({ "&": "&amp;", "<": "&lt;", ">": "&gt;", '"': "&quot;" }[s] || s));
      }

      // --- Theme ---------------------------------------------------------------
      (function initTheme() {
        const toggle = document.getElementById("theme-toggle");
        function setTheme(theme) {
          if (theme === "light") {
            document.documentElement.setAttribute("data-theme", "light");
          } else {
            document.documentElement.removeAttribute("data-theme");
          }
          try { localStorage.setItem("annotab-theme", theme); } catch (_error) { /* private mode */ }
        }
        let stored = null;
        try { stored = localStorage.getItem("annotab-theme"); } catch (_error) { stored = null; }
        const system = window.matchMedia && window.matchMedia("(prefers-color-scheme: light)").matches ? "light" : "dark";
        setTheme(stored || system);
        toggle.addEventListener("click", () => {
          setTheme(document.documentElement.getAttribute("data-theme") === "light" ? "dark" : "light");
        });
      })();

      // --- State ---------------------------------------------------------------
      let colWidths = Array.from({ length: MAX_COLS }, (_v, i) => {
        const width = Number((config.widths || [])[i]);
        return Number.isFinite(width) && width > 0 ? width : DEFAULT_COL_WIDTH;
      });
      let filters = {};
      let filterTargetCol = null;
      let freezeCols = 0;
      let freezeRows = 0;
      let comments = {};
      let selection = null;
      let currentKey = null;
      let panelOpen = false;
      let touched = false;

      // --- Rendering -----------------------------------------------------------
      function syncColgroup() {
        colgroup.innerHTML = "";
        const corner = document.createElement("col");
        corner.style.width = ROW_HEADER_WIDTH + "px";
        colgroup.appendChild(corner);
        colWidths.forEach((w) => {
          const c = document.createElement("col");
          c.style.width = w + "px";
          colgroup.appendChild(c);
        });
      }

      function renderTable() {
        const frag = document.createDocumentFragment();
        DATA.forEach((_row, rIdx) => {
          const tr = document.createElement("tr");
          if (MODE === "diff") tr.className = "kind-" + cellAt(rIdx + 1, 1);
          const th = document.createElement("th");
          th.textContent = rIdx + 1;
          th.dataset.row = rIdx + 1;
          tr.appendChild(th);
          for (let c = 1; c <= MAX_COLS; c += 1) {
            const td = document.createElement("td");
            td.dataset.row = rIdx + 1;
            td.dataset.col = c;
            td.textContent = cellAt(rIdx + 1, c);
            tr.appendChild(td);
          }
          frag.appendChild(tr);
        });
        tbody.appendChild(frag);
      }

      // --- Sticky layout -------------------------------------------------------
      function updateStickyOffsets() {
        const headCells = Array.from(thead.querySelectorAll("th[data-col]"));
        let left = ROW_HEADER_WIDTH;
        headCells.forEach((th, idx) => {
          if (idx < freezeCols) {
            th.classList.add("freeze");
            th.style.left = left + "px";
            th.style.zIndex = Z.frozenColumnHeader;
            left += colWidths[idx];
          } else {
            th.classList.remove("freeze");
            th.style.left = "";
            th.style.zIndex = Z.columnHeader;
          }
        });
        const corner = thead.querySelector("th.corner");
        if (corner) corner.style.zIndex = Z.corner + 1;

        const headHeight = thead.offsetHeight || 0;
        let top = headHeight;
        Array.from(tbody.querySelectorAll("tr")).forEach((tr, rIdx) => {
          const rowFrozen = rIdx < freezeRows;
          const rowTop = top;
          Array.from(tr.children).forEach((cell, cIdx) => {
            const colFrozen = cIdx > 0 && cIdx - 1 < freezeCols;
            if (cIdx > 0) {
              if (colFrozen) {
                cell.classList.add("freeze");
                cell.style.left = ROW_HEADER_WIDTH + colWidths.slice(0, cIdx - 1).reduce((a, b) => a + b, 0) + "px";
              } else {
                cell.classList.remove("freeze");
                cell.style.left = "";
              }
            }
            if (rowFrozen) {
              cell.classList.add("freeze-row");
              cell.style.top = rowTop + "px";
            } else {
              cell.classList.remove("freeze-row");
              cell.style.top = "";
            }
            if (cIdx === 0) {
              cell.style.zIndex = rowFrozen ? Z.frozenRowHeader : Z.rowHeader;
            } else if (rowFrozen && colFrozen) {
              cell.style.zIndex = Z.corner;
            } else if (rowFrozen) {
              cell.style.zIndex = Z.frozenRow;
            } else if (colFrozen) {
              cell.style.zIndex = Z.frozenColumn;
            } else {
              cell.style.zIndex = Z.body;
            }
          });
          top += tr.offsetHeight;
        });
      }

      function startResize(col, event) {
        event.preventDefault();
        const startX = event.clientX;
        const startW = colWidths[col - 1];
        function onMove(e) {
          colWidths[col - 1] = Math.round(clamp(startW + (e.clientX - startX), MIN_COL_WIDTH, MAX_COL_WIDTH));
          syncColgroup();
          updateStickyOffsets();
        }
        function onUp() {
          window.removeEventListener("pointermove", onMove);
          window.removeEventListener("pointerup", onUp);
          window.removeEventListener("pointercancel", onUp);
        }
        window.addEventListener("pointermove", onMove);
        window.addEventListener("pointerup", onUp);
        window.addEventListener("pointercancel", onUp);
      }

      function fitToWidth() {
        const box = document.querySelector(".table-box");
        const available = box.clientWidth - ROW_HEADER_WIDTH - Number(LAYOUT.fitGutter || 24);
        const sum = colWidths.reduce((a, b) => a + b, 0);
        if (sum === 0 || available <= 0) return;
        const scale = clamp(available / sum, Number(LAYOUT.fitScaleMin || 0.4), Number(LAYOUT.fitScaleMax || 2));
        colWidths = colWidths.map((w) => clamp(Math.round(w * scale), MIN_COL_WIDTH, MAX_COL_WIDTH));
        syncColgroup();
        updateStickyOffsets();
      }

      // --- Filters -------------------------------------------------------------
      function makePredicate(action, keyword) {
        if (action === "not-empty") return (v) => (v ?? "").trim() !== "";
        if (action === "empty") return (v) => (v ?? "").trim() === "";
        const lower = String(keyword || "").toLowerCase();
        if (action === "contains") return (v) => (v ?? "").toLowerCase().includes(lower);
        return (v) => !(v ?? "").toLowerCase().includes(lower);
      }

      function accepts(fn, value) {
        try { return !!fn(value); } catch (_error) { return true; }
      }

      function computeVisibility() {
        const entries = Object.entries(filters);
        return DATA.map((_row, rIdx) => entries.every(([col, fn]) => accepts(fn, cellAt(rIdx + 1, Number(col)))));
      }

      function updateFilterIndicators() {
        thead.querySelectorAll("th[data-col]").forEach((th) => {
          th.classList.toggle("filtered", !!filters[Number(th.dataset.col)]);
        });
      }

      function applyFilters() {
        const visible = computeVisibility();
        tbody.querySelectorAll("tr").forEach((tr, rIdx) => {
          tr.style.display = visible[rIdx] ? "" : "none";
        });
        updateStickyOffsets();
        updateFilterIndicators();
      }

      function positionMenu(menu, anchorRect, width) {
        const margin = 8;
        menu.style.left = window.scrollX + clamp(anchorRect.left, margin, window.innerWidth - width - margin) + "px";
        menu.style.top = window.scrollY + anchorRect.bottom + margin + "px";
        menu.style.display = "block";
      }

      function openFilterMenu(col, anchorRect) {
        filterTargetCol = col;
        freezeColCheck.checked = freezeCols === col;
        positionMenu(filterMenu, anchorRect, 200);
      }

      function closeFilterMenu() {
        filterMenu.style.display = "none";
        filterTargetCol = null;
      }

      function openRowMenu(row, anchorRect) {
        rowMenu.dataset.row = String(row);
        freezeRowCheck.checked = freezeRows === row;
        positionMenu(rowMenu, anchorRect, 180);
      }

      function closeRowMenu() {
        rowMenu.style.display = "none";
        rowMenu.dataset.row = "";
      }

      filterMenu.addEventListener("click", (e) => {
        const action = e.target.dataset ? e.target.dataset.action : null;
        if (!action || filterTargetCol == null) return;
        const col = filterTargetCol;
        if (action === "reset") {
          delete filters[col];
        } else if (action === "contains" || action === "not-contains") {
          const keyword = window.prompt("Enter the text to filter by");
          if (keyword == null || keyword === "") { closeFilterMenu(); return; }
          filters[col] = makePredicate(action, keyword);
        } else {
          filters[col] = makePredicate(action);
        }
        closeFilterMenu();
        applyFilters();
      });

      freezeColCheck.addEventListener("change", () => {
        if (filterTargetCol == null) return;
        freezeCols = freezeColCheck.checked ? clamp(filterTargetCol, 0, MAX_COLS) : 0;
        updateStickyOffsets();
      });

      freezeRowCheck.addEventListener("change", () => {
        const row = Number(rowMenu.dataset.row || 0);
        freezeRows = freezeRowCheck.checked ? clamp(row, 0, DATA.length) : 0;
        updateStickyOffsets();
      });

      document.addEventListener("click", (e) => {
        if (filterMenu.style.display === "block" && !filterMenu.contains(e.target)) closeFilterMenu();
        if (rowMenu.style.display === "block" && !rowMenu.contains(e.target) && !e.target.closest("tbody th")) {
          closeRowMenu();
        }
      });

      // --- Comment store -------------------------------------------------------
      function cellKey(row, col) { return row + "-" + col; }

      function rangeKey(sel) {
        return cellKey(sel.startRow, sel.startCol) + ":" + cellKey(sel.endRow, sel.endCol);
      }

      function isSingle(sel) { return sel.startRow === sel.endRow && sel.startCol === sel.endCol; }

      function entryCells(entry) {
        if (!entry.isRange) return [[entry.row, entry.col]];
        const cells = [];
        for (let r = entry.startRow; r <= entry.endRow; r += 1) {
          for (let c = entry.startCol; c <= entry.endCol; c += 1) cells.push([r, c]);
        }
        return cells;
      }

      function hasComment(row, col) {
        if (comments[cellKey(row, col)]) return true;
        return Object.values(comments).some((entry) => entry.isRange
          && row >= entry.startRow && row <= entry.endRow && col >= entry.startCol && col <= entry.endCol);
      }

      function setDot(row, col, on) {
        const td = cellNode(row, col);
        if (!td) return;
        td.classList.toggle("has-comment", on);
        const dot = td.querySelector(".dot");
        if (on && !dot) {
          const span = document.createElement("span");
          span.className = "dot";
          td.appendChild(span);
        } else if (!on && dot) {
          dot.remove();
        }
      }

      function renderAllIndicators() {
        tbody.querySelectorAll("td.has-comment").forEach((td) => setDot(Number(td.dataset.row), Number(td.dataset.col), false));
        Object.values(comments).forEach((entry) => entryCells(entry).forEach(([r, c]) => setDot(r, c, true)));
      }

      function sortKey(entry) {
        return entry.isRange
          ? [entry.startRow, entry.startCol, 1, entry.endRow, entry.endCol]
          : [entry.row, entry.col, 0, entry.row, entry.col];
      }

      function sortedEntries() {
        return Object.values(comments).sort((a, b) => {
          const ka = sortKey(a);
          const kb = sortKey(b);
          for (let i = 0; i < ka.length; i += 1) {
            if (ka[i] !== kb[i]) return ka[i] - kb[i];
          }
          return 0;
        });
      }

      function entryLabel(entry) {
        if (!entry.isRange) return "R" + entry.row + " C" + entry.col;
        const rows = entry.startRow === entry.endRow ? "R" + entry.startRow : "R" + entry.startRow + "-R" + entry.endRow;
        const cols = entry.startCol === entry.endCol ? "C" + entry.startCol : "C" + entry.startCol + "-C" + entry.endCol;
        return rows + " " + cols;
      }

      function saveSnapshot() {
        try {
          localStorage.setItem(STORAGE_KEY, JSON.stringify({ comments: { ...comments }, timestamp: Date.now() }));
        } catch (error) {
          console.warn("Failed to save comments to localStorage:", error);
        }
      }

      function loadSnapshot() {
        try {
          const raw = localStorage.getItem(STORAGE_KEY);
          if (!raw) return null;
          const data = JSON.parse(raw);
          if (!data || typeof data.comments != "object" || Date.now() - Number(data.timestamp) > STORAGE_TTL) {
            localStorage.removeItem(STORAGE_KEY);
            return null;
          }
          return data;
        } catch (error) {
          console.warn("Failed to load comments from localStorage:", error);
          return null;
        }
      }

      function clearSnapshot() {
        try { localStorage.removeItem(STORAGE_KEY); } catch (_error) { /* private mode */ }
      }

      function saveCurrent() {
        if (!currentKey || !selection) return;
        touched = true;
        const text = commentInput.value.trim();
        const sel = selection;
        if (isSingle(sel)) {
          if (text) {
            comments[currentKey] = { row: sel.startRow, col: sel.startCol, text, value: cellAt(sel.startRow, sel.startCol) };
          } else {
            delete comments[currentKey];
          }
          setDot(sel.startRow, sel.startCol, hasComment(sel.startRow, sel.startCol));
        } else {
          if (text) {
            comments[currentKey] = { ...sel, text, isRange: true };
          } else {
            delete comments[currentKey];
          }
          entryCells({ ...sel, isRange: true }).forEach(([r, c]) => setDot(r, c, hasComment(r, c)));
        }
        refreshList();
        closeCard();
        saveSnapshot();
      }

      function clearCurrent() {
        commentInput.value = "";
        saveCurrent();
      }

      function refreshList() {
        const items = sortedEntries();
        commentCount.textContent = items.length;
        commentToggle.textContent = "Comments (" + items.length + ")";
        if (!items.length) panelOpen = false;
        commentPanel.classList.toggle("collapsed", !panelOpen);
        commentList.innerHTML = "";
        if (!items.length) {
          const li = document.createElement("li");
          li.className = "hint";
          li.textContent = "No comments yet";
          commentList.appendChild(li);
          return;
        }
        items.forEach((entry) => {
          const li = document.createElement("li");
          li.innerHTML = "<strong>" + entryLabel(entry) + "</strong> " + escapeHtml(entry.text);
          li.addEventListener("click", () => {
            selection = entry.isRange
              ? { startRow: entry.startRow, endRow: entry.endRow, startCol: entry.startCol, endCol: entry.endCol }
              : { startRow: entry.row, endRow: entry.row, startCol: entry.col, endCol: entry.col };
            updateSelectionVisual();
            openCardForSelection();
          });
          commentList.appendChild(li);
        });
      }

      commentToggle.addEventListener("click", () => {
        panelOpen = !panelOpen && Object.keys(comments).length > 0;
        commentPanel.classList.toggle("collapsed", !panelOpen);
      });

      // --- Selection and comment card -------------------------------------------
      let dragStart = null;

      function computeSelection(start, end) {
        return {
          startRow: Math.min(start.row, end.row),
          endRow: Math.max(start.row, end.row),
          startCol: Math.min(start.col, end.col),
          endCol: Math.max(start.col, end.col),
        };
      }

      function clearSelectionVisual() {
        document.querySelectorAll(".selected").forEach((el) => el.classList.remove("selected"));
      }

      function updateSelectionVisual() {
        clearSelectionVisual();
        if (!selection) return;
        for (let r = selection.startRow; r <= selection.endRow; r += 1) {
          for (let c = selection.startCol; c <= selection.endCol; c += 1) {
            const td = cellNode(r, c);
            if (td) td.classList.add("selected");
          }
        }
      }

      function openCardForSelection() {
        if (!selection) return;
        const sel = selection;
        if (isSingle(sel)) {
          currentKey = cellKey(sel.startRow, sel.startCol);
          cardTitle.textContent = "Comment on R" + sel.startRow + " C" + sel.startCol;
          cellPreview.textContent = "Cell value: " + (cellAt(sel.startRow, sel.startCol) || "(empty)");
        } else {
          currentKey = rangeKey(sel);
          cardTitle.textContent = "Comment on " + entryLabel({ ...sel, isRange: true });
          cellPreview.textContent = "Selected " + (sel.endRow - sel.startRow + 1) + " x " + (sel.endCol - sel.startCol + 1) + " cells";
        }
        const existing = comments[currentKey];
        commentInput.value = existing ? existing.text : "";
        card.style.display = "block";
        positionCard(sel);
        commentInput.focus();
      }

      function positionCard(sel) {
        const first = cellNode(sel.startRow, sel.startCol);
        if (!first) return;
        const last = cellNode(sel.endRow, sel.endCol) || first;
        const a = first.getBoundingClientRect();
        const b = last.getBoundingClientRect();
        const width = card.offsetWidth || 380;
        const height = card.offsetHeight || 220;
        const margin = 12;
        const vw = window.innerWidth;
        const vh = window.innerHeight;
        const minLeft = ROW_HEADER_WIDTH + margin;
        let left;
        let top;
        if (vw - b.right - margin >= width) {
          left = b.right + margin;
          top = clamp(a.top, margin, vh - height - margin);
        } else if (vh - b.bottom - margin >= height) {
          left = clamp(a.left, minLeft, vw - width - margin);
          top = b.bottom + margin;
        } else if (a.top - margin >= height) {
          left = clamp(a.left, minLeft, vw - width - margin);
          top = a.top - height - margin;
        } else {
          left = clamp(a.left - width - margin, minLeft, vw - width - margin);
          top = clamp(a.top, margin, vh - height - margin);
        }
        card.style.left = window.scrollX + left + "px";
        card.style.top = window.scrollY + top + "px";
      }

      function closeCard() {
        card.style.display = "none";
        currentKey = null;
        selection = null;
        clearSelectionVisual();
      }

      tbody.addEventListener("mousedown", (e) => {
        const td = e.target.closest("td");
        if (!td) return;
        e.preventDefault();
        dragStart = { row: Number(td.dataset.row), col: Number(td.dataset.col) };
        selection = computeSelection(dragStart, dragStart);
        document.body.classList.add("dragging");
        updateSelectionVisual();
        function onMove(ev) {
          const el = document.elementFromPoint(ev.clientX, ev.clientY);
          const over = el ? el.closest("td") : null;
          if (!over || !over.dataset.row) return;
          selection = computeSelection(dragStart, { row: Number(over.dataset.row), col: Number(over.dataset.col) });
          updateSelectionVisual();
        }
        function onUp() {
          window.removeEventListener("mousemove", onMove);
          window.removeEventListener("mouseup", onUp);
          document.body.classList.remove("dragging");
          dragStart = null;
          openCardForSelection();
        }
        window.addEventListener("mousemove", onMove);
        window.addEventListener("mouseup", onUp);
      });

      tbody.addEventListener("click", (e) => {
        const th = e.target.closest("th");
        if (!th) return;
        e.stopPropagation();
        openRowMenu(Number(th.dataset.row), th.getBoundingClientRect());
      });

      thead.querySelectorAll(".resizer").forEach((r) => {
        r.addEventListener("pointerdown", (e) => {
          e.stopPropagation();
          startResize(Number(r.dataset.col), e);
        });
        r.addEventListener("click", (e) => e.stopPropagation());
      });
      thead.querySelectorAll("th[data-col] .th-inner").forEach((inner) => {
        inner.addEventListener("click", (e) => {
          e.stopPropagation();
          openFilterMenu(Number(inner.parentElement.dataset.col), inner.getBoundingClientRect());
        });
      });

      document.getElementById("save-comment").addEventListener("click", saveCurrent);
      document.getElementById("clear-comment").addEventListener("click", clearCurrent);
      document.getElementById("close-card").addEventListener("click", closeCard);
      if (fitBtn) fitBtn.addEventListener("click", fitToWidth);

      // --- Live reload ---------------------------------------------------------
      let reloading = false;
      (function connect() {
        const es = new EventSource(String(config.sseUrl || "/sse"));
        es.onmessage = (ev) => {
          if (ev.data === "reload") {
            reloading = true;
            location.reload();
          }
        };
        es.onerror = () => {
          es.close();
          if (!sent) setTimeout(connect, 1500);
        };
      })();

      // --- Submit & exit -------------------------------------------------------
      let sent = false;
      let globalComment = "";
      const submitModal = document.getElementById("submit-modal");
      const modalSummary = document.getElementById("modal-summary");
      const globalCommentInput = document.getElementById("global-comment");
      const doneModal = document.getElementById("done-modal");

      function payload(reason) {
        const data = {
          file: FILE_NAME,
          mode: MODE,
          reason,
          timestamp: new Date().toISOString(),
          comments: sortedEntries(),
        };
        if (globalComment.trim()) data.summary = globalComment.trim();
        return data;
      }

      function deliver(url, body) {
        const blob = new Blob([body], { type: "application/json" });
        if (navigator.sendBeacon && navigator.sendBeacon(url, blob)) return;
        fetch(url, { method: "POST", body, keepalive: true, headers: { "Content-Type": "application/json" } })
          .catch(() => {});
      }

      function sendAndExit(reason) {
        if (sent) return;
        sent = true;
        clearSnapshot();
        deliver(String(config.exitUrl || "/exit"), JSON.stringify(payload(reason)));
      }

      function showSubmitModal() {
        const count = Object.keys(comments).length;
        modalSummary.textContent = count === 0
          ? "No comments added yet."
          : count === 1 ? "1 comment will be submitted." : count + " comments will be submitted.";
        globalCommentInput.value = globalComment;
        submitModal.classList.add("visible");
        globalCommentInput.focus();
      }

      function doSubmit(reason) {
        globalComment = globalCommentInput.value;
        submitModal.classList.remove("visible");
        sendAndExit(reason);
        doneModal.classList.add("visible");
        setTimeout(() => window.close(), 200);
      }

      document.getElementById("send-and-exit").addEventListener("click", showSubmitModal);
      document.getElementById("modal-cancel").addEventListener("click", () => submitModal.classList.remove("visible"));
      document.getElementById("modal-submit").addEventListener("click", () => doSubmit("button"));
      submitModal.addEventListener("click", (e) => {
        if (e.target === submitModal) submitModal.classList.remove("visible");
      });
      window.addEventListener("pagehide", () => {
        if (!reloading) sendAndExit("pagehide");
      });
      document.addEventListener("keydown", (e) => {
        const mod = e.metaKey || e.ctrlKey;
        if (mod && e.shiftKey && e.key === "Enter") {
          e.preventDefault();
          doSubmit("shortcut");
          return;
        }
        if (e.key === "Escape") {
          closeCard();
          closeFilterMenu();
          closeRowMenu();
        }
        if (mod && e.key === "Enter") {
          e.preventDefault();
          if (submitModal.classList.contains("visible")) {
            doSubmit("button");
          } else {
            saveCurrent();
          }
        }
      });

      // --- Boot ----------------------------------------------------------------
      syncColgroup();
      renderTable();
      updateStickyOffsets();
      updateFilterIndicators();
      refreshList();

      (function checkRecovery() {
        const stored = loadSnapshot();
        if (!stored || Object.keys(stored.comments).length === 0) return;
        const modal = document.getElementById("recovery-modal");
        const count = Object.keys(stored.comments).length;
        const minutes = Math.floor((Date.now() - Number(stored.timestamp)) / 60000);
        const ago = minutes < 1 ? "just now" : minutes < 60 ? minutes + " min ago" : Math.floor(minutes / 60) + " h ago";
        document.getElementById("recovery-summary").textContent = count + " comment" + (count === 1 ? "" : "s") + " from " + ago;
        modal.classList.add("visible");
        function hide() { modal.classList.remove("visible"); }
        document.getElementById("recovery-discard").addEventListener("click", () => { clearSnapshot(); hide(); });
        document.getElementById("recovery-restore").addEventListener("click", () => {
          if (touched) { hide(); return; }
          const restored = {};
          Object.entries(stored.comments).forEach(([key, entry]) => {
            if (entry && String(entry.text || "").trim()) restored[key] = entry;
          });
          comments = restored;
          renderAllIndicators();
          refreshList();
          hide();
        });
      })();

      // --- Markdown scroll sync --------------------------------------------------
      if (MODE === "markdown") {
        const mdLeft = document.querySelector(".md-left");
        const mdRight = document.querySelector(".md-right");
        let activePane = null;
        function syncScroll(source, target, name) {
          if (activePane && activePane !== name) return;
          activePane = name;
          requestAnimationFrame(() => {
            const sourceMax = source.scrollHeight - source.clientHeight;
            const targetMax = target.scrollHeight - target.clientHeight;
            if (sourceMax > 0 && targetMax > 0) {
              target.scrollTop = Math.round((source.scrollTop / sourceMax) * targetMax);
            }
            setTimeout(() => { activePane = null; }, 100);
          });
        }
        if (mdLeft && mdRight) {
          mdLeft.addEventListener("scroll", () => syncScroll(mdLeft, mdRight, "left"), { passive: true });
          mdRight.addEventListener("scroll", () => syncScroll(mdRight, mdLeft, "right"), { passive: true });
        }
      }
    })();
"""

_PAGE = """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <meta name="viewport" content="width=device-width,initial-scale=1" />
  <title>{title} | annotab</title>
  <style>{style}</style>
</head>
<body>
  <header class="topbar">
    <div class="meta">
      <h1>{title}</h1>
      <span class="badge">{mode_label}</span>
      <span class="badge">Click or drag to comment / ESC to cancel</span>
      <span class="pill">Comments <strong id="comment-count">0</strong></span>
    </div>
    <div class="actions">
      <button id="theme-toggle" type="button" title="Toggle theme">Theme</button>
      <button id="send-and-exit" type="button">Submit &amp; Exit</button>
    </div>
  </header>
  <div class="wrap">
{body}
  </div>
  <div class="floating" id="comment-card">
    <div class="card-head">
      <h2 id="card-title">Cell Comment</h2>
      <div class="card-buttons">
        <button id="close-card" type="button">Close</button>
        <button id="clear-comment" type="button">Delete</button>
      </div>
    </div>
    <div id="cell-preview" class="modal-summary"></div>
    <textarea id="comment-input" placeholder="Enter your comment or note"></textarea>
    <div class="card-actions"><button class="primary" id="save-comment" type="button">Save</button></div>
  </div>
  <aside class="comment-list collapsed" id="comment-panel">
    <h3>Comments</h3>
    <ol id="comment-list"></ol>
    <p class="hint">Close the tab or press "Submit &amp; Exit" to send comments and stop the server.</p>
  </aside>
  <button class="comment-toggle" id="comment-toggle" type="button">Comments (0)</button>
  <div class="filter-menu" id="filter-menu">
    <label class="menu-check"><input type="checkbox" id="freeze-col-check" /> Freeze up to this column</label>
    <button data-action="not-empty" type="button">Rows where not empty</button>
    <button data-action="empty" type="button">Rows where empty</button>
    <button data-action="contains" type="button">Contains...</button>
    <button data-action="not-contains" type="button">Does not contain...</button>
    <button data-action="reset" type="button">Clear filter</button>
  </div>
  <div class="filter-menu" id="row-menu">
    <label class="menu-check"><input type="checkbox" id="freeze-row-check" /> Freeze up to this row</label>
  </div>
  <div class="modal-overlay" id="recovery-modal">
    <div class="modal-dialog">
      <h3>Previous Comments Found</h3>
      <p class="modal-summary" id="recovery-summary"></p>
      <div class="modal-actions">
        <button id="recovery-discard" type="button">Discard</button>
        <button class="primary" id="recovery-restore" type="button">Restore</button>
      </div>
    </div>
  </div>
  <div class="modal-overlay" id="submit-modal">
    <div class="modal-dialog">
      <h3>Submit Review</h3>
      <p class="modal-summary" id="modal-summary"></p>
      <label for="global-comment">Overall comment (optional)</label>
      <textarea id="global-comment" placeholder="Add a summary or overall feedback..."></textarea>
      <div class="modal-actions">
        <button id="modal-cancel" type="button">Cancel</button>
        <button class="primary" id="modal-submit" type="button">Submit</button>
      </div>
    </div>
  </div>
  <div class="modal-overlay" id="done-modal">
    <div class="modal-dialog">
      <h3>Submitted</h3>
      <p class="modal-summary">Comments were sent. You can close this tab.</p>
    </div>
  </div>
  <script id="annotab-grid-json" type="application/json">{grid_json}</script>
  <script id="annotab-config-json" type="application/json">{config_json}</script>
  <script>{script}</script>
</body>
</html>
"""

_MODE_LABELS = {"csv": "Table", "text": "Text", "markdown": "Markdown", "diff": "Diff"}


def _embed_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False).replace("</", "<\\/")


def _render_table(labels: list[str]) -> str:
    header_cells = "".join(
        "<th data-col='{col}'><div class='th-inner'>{label}"
        "<span class='resizer' data-col='{col}'></span></div></th>".format(col=index, label=escape(label))
        for index, label in enumerate(labels, start=1)
    )
    return (
        "<div class='table-box'>"
        "<table id='grid-table'><colgroup id='colgroup'></colgroup>"
        "<thead><tr><th class='corner' aria-label='row/col corner'></th>{header_cells}</tr></thead>"
        "<tbody id='tbody'></tbody></table></div>"
    ).format(header_cells=header_cells)


def build_page_config(result: IngestResult) -> dict[str, Any]:
    labels = result.grid.column_labels(minimum=1)
    return {
        "file": result.title,
        "mode": result.mode,
        "encoding": result.encoding,
        "columnCount": len(labels),
        "labels": labels,
        "widths": initial_column_widths(len(labels), result.mode),
        "layout": layout_constants(),
        "zIndex": Z_INDEX,
        "storageKey": STORAGE_PREFIX + result.title,
        "storageTtlMs": SNAPSHOT_TTL_MS,
        "sseUrl": "/sse",
        "exitUrl": "/exit",
    }


def render_page(result: IngestResult) -> str:
    config = build_page_config(result)
    table = _render_table(config["labels"])
    if result.mode == "markdown" and result.preview_html is not None:
        body = (
            "<div class='md-layout'>"
            "<div class='md-left'><div class='md-preview'>{preview}</div></div>"
            "<div class='md-right'>{table}</div>"
            "</div>"
        ).format(preview=result.preview_html, table=table)
    else:
        body = (
            "<div class='toolbar'><button id='fit-width' type='button'>Fit to width</button>"
            "<span>Drag header edge to resize columns / click a header to filter or freeze</span></div>{table}"
        ).format(table=table)
    return _PAGE.format(
        title=escape(result.title),
        mode_label=escape(_MODE_LABELS.get(result.mode, result.mode)),
        style=_STYLE,
        body=body,
        grid_json=_embed_json({"rows": result.grid.to_json_rows()}),
        config_json=_embed_json(config),
        script=_SCRIPT,
    )
