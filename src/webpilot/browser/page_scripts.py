"""Page-side JS snippets for extraction and page measurement."""

EXTRACT_LINKS_JS = """
({ limit }) => {
  const maxItems = Math.max(1, Math.min(Number(limit || 100), 1000));
  const seen = new Set();
  const links = [];
  for (const anchor of Array.from(document.querySelectorAll("a[href]"))) {
    if (links.length >= maxItems) break;
    const href = anchor.href || "";
    if (!href || href.startsWith("javascript:") || seen.has(href)) continue;
    seen.add(href);
    links.push({
      href,
      text: (anchor.innerText || anchor.textContent || "").trim().slice(0, 300),
      title: anchor.getAttribute("title") || null,
      rel: anchor.getAttribute("rel") || null,
    });
  }
  return links;
}
"""

EXTRACT_TABLES_JS = """
({ limit }) => {
  const maxTables = Math.max(1, Math.min(Number(limit || 10), 100));
  const clean = (cell) => (cell.innerText || cell.textContent || "").replace(/\\s+/g, " ").trim();
  const tables = [];
  for (const table of Array.from(document.querySelectorAll("table"))) {
    if (tables.length >= maxTables) break;
    const rows = Array.from(table.querySelectorAll("tr"));
    if (!rows.length) continue;
    let headers = [];
    const headRow = table.querySelector("thead tr") || (rows[0].querySelector("th") ? rows[0] : null);
    if (headRow) {
      headers = Array.from(headRow.querySelectorAll("th,td")).map(clean);
    }
    const body = [];
    for (const row of rows) {
      if (row === headRow) continue;
      const cells = Array.from(row.querySelectorAll("td,th")).map(clean);
      if (cells.length) body.push(cells);
    }
    tables.push({
      index: tables.length,
      caption: table.caption ? clean(table.caption) : null,
      headers,
      rows: body,
    });
  }
  return tables;
}
"""

PAGE_SIZE_JS = """
() => ({
  width: Math.max(document.documentElement.scrollWidth || 0, document.body ? document.body.scrollWidth : 0),
  height: Math.max(document.documentElement.scrollHeight || 0, document.body ? document.body.scrollHeight : 0),
})
"""
